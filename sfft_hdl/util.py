#
# Copyright (C) 2022-2024 Daniel Estevez <daniel@destevez.net>
#
# This file is part of sfft-hdl
#
# SPDX-License-Identifier: MIT
#

import numpy as np


def clamp_nbits(x, nbits):
    offset = 2**(nbits - 1)
    return ((x + offset) % 2**nbits) - offset


def is_power_of_two(n):
    return isinstance(n, (int, np.integer)) and n > 0 and (n & (n - 1)) == 0


def bit_reverse(n, nbits):
    """Reverses the order of the ``nbits`` LSBs of ``n``"""
    bits = ('0'*nbits + bin(n)[2:])[-nbits:] if nbits > 0 else ''
    return int(bits[::-1], 2) if bits else 0


def bit_reverse_order(x):
    """Permutes an array of length 2**n in bit-reversed order"""
    x = np.asarray(x)
    nbits = int(np.log2(x.shape[-1]))
    return x[..., [bit_reverse(n, nbits) for n in range(x.shape[-1])]]


def round_shift(x, shift, rounding_mode):
    """Drops ``shift`` LSBs of ``x``.

    This works both on numpy integer arrays and on Amaranth values, so that
    the models and the gateware share the same arithmetic. ``rounding_mode``
    is a :class:`Rounding`. With ``Rounding.ROUNDING``, half an LSB is added
    before the arithmetic shift (round half up). Otherwise the shift floors.
    """
    if shift == 0:
        return x
    if rounding_mode.rounds:
        x = x + (1 << (shift - 1))
    return x >> shift
