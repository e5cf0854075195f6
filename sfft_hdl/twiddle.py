#
# Copyright (C) 2022-2024 Daniel Estevez <daniel@destevez.net>
#
# This file is part of sfft-hdl
#
# SPDX-License-Identifier: MIT
#

from amaranth import *
from amaranth.lib.memory import Memory
import numpy as np

from .util import is_power_of_two


def _check_size(fft_size):
    if not is_power_of_two(fft_size) or fft_size < 2:
        raise ValueError(
            f'FFT size must be a power of two >= 2 (got {fft_size})')
    return int(fft_size).bit_length() - 1


def twiddle_factors(fft_size, inverse=False):
    """Base twiddle factors of an FFT

    Returns the ``fft_size // 2`` complex roots of unity
    ``exp(-2j*pi*k/fft_size)`` (or ``exp(2j*pi*k/fft_size)`` for the inverse
    transform).
    """
    _check_size(fft_size)
    sign = 1 if inverse else -1
    k = np.arange(fft_size // 2)
    return np.exp(sign * 2j * np.pi * k / fft_size)


def stage_twiddle_indices(order, fft_size):
    """Indices of the base twiddle factors used by a stage

    The butterfly of order ``order`` uses ``2**order`` distinct twiddle
    factors, which are the base twiddles with a stride of
    ``fft_size // 2**(order + 1)``. This subsequence is repeated to cover the
    ``fft_size // 2`` butterflies of a transform.
    """
    order_log2 = _check_size(fft_size)
    if order < 0 or order >= order_log2:
        raise ValueError(
            f'stage order {order} out of range for FFT size {fft_size}')
    stride = fft_size // 2**(order + 1)
    t = np.arange(fft_size // 2)
    return (t % 2**order) * stride


def stage_twiddles(order, fft_size, inverse=False):
    """Twiddle factors consumed by a stage, one per butterfly"""
    return twiddle_factors(fft_size, inverse)[
        stage_twiddle_indices(order, fft_size)]


def quantize_twiddles(twiddles, width):
    """Converts twiddle factors to fixed point

    The scale is ``2**(width - 2)``, so that 1 can be represented exactly.
    Returns the real and imaginary parts as lists of int.
    """
    scale = 1 << (width - 2)
    twiddles = np.asarray(twiddles)
    return ([int(a) for a in np.round(scale * twiddles.real)],
            [int(a) for a in np.round(scale * twiddles.imag)])


class TwiddleROM(Elaboratable):
    """Twiddle factor ROM for a butterfly

    The ROM stores the ``2**order`` distinct twiddle factors of a butterfly
    and is read asynchronously.

    Parameters
    ----------
    order : int
        Order of the butterfly that uses the twiddle factors. It must be at
        least 2, since the butterflies of order 0 and 1 do not need a
        multiplier.
    width : int
        Width of the twiddle factors.
    inverse : bool
        Selects the twiddles for the inverse transform.

    Attributes
    ----------
    index : Signal(order), in
        Index of the twiddle factor.
    re_out : Signal(signed(width)), out
        Real part of the twiddle factor.
    im_out : Signal(signed(width)), out
        Imaginary part of the twiddle factor.
    """
    def __init__(self, order, width, inverse=False):
        if order < 2:
            raise ValueError(f'TwiddleROM needs order >= 2 (got {order})')
        self.order = order
        self.tw = width
        self.inverse = inverse

        self.index = Signal(order)
        self.re_out = Signal(signed(width))
        self.im_out = Signal(signed(width))

    @property
    def scale_clog2(self):
        return self.tw - 2

    def table(self):
        # The twiddles of a butterfly only depend on its order, so we use
        # the smallest FFT where this order appears.
        fft_size = 2**(self.order + 1)
        twiddles = stage_twiddles(self.order, fft_size, self.inverse)
        return quantize_twiddles(twiddles[:2**self.order], self.tw)

    def elaborate(self, platform):
        m = Module()
        twiddles_re, twiddles_im = self.table()
        # Pack re and im together in the same Memory
        mask = 2**self.tw - 1
        twiddles_packed = [((re & mask) << self.tw) | (im & mask)
                           for re, im in zip(twiddles_re, twiddles_im)]
        m.submodules.twiddle_mem = twiddle_mem = (
            Memory(
                shape=2*self.tw,
                depth=len(twiddles_packed),
                init=twiddles_packed,
                attrs={'ram_style': 'distributed'},
            ))
        rdport = twiddle_mem.read_port(domain='comb')
        m.d.comb += [
            rdport.addr.eq(self.index),
            self.re_out.eq(rdport.data[self.tw:].as_signed()),
            self.im_out.eq(rdport.data[:self.tw].as_signed()),
        ]
        return m
