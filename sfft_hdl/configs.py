#
# Copyright (C) 2024 Daniel Estevez <daniel@destevez.net>
#
# This file is part of sfft-hdl
#
# SPDX-License-Identifier: MIT
#

from .config import Commutation, Direction, FFTConfig, Rounding


def default():
    """Default configuration: 1024-point forward FFT, scaled"""
    return FFTConfig()


def forward_16bit_1024():
    """1024-point forward FFT for bursty inputs"""
    config = FFTConfig()
    config.commutation = Commutation.BURSTING
    return config


def inverse_16bit_1024():
    """1024-point inverse FFT"""
    config = FFTConfig()
    config.direction = Direction.INVERSE_ONLY
    return config


def both_unscaled_64():
    """64-point FFT/IFFT with full bit growth"""
    config = FFTConfig()
    config.fft_size = 64
    config.width_in = 12
    config.width_twiddle = 16
    config.rounding = Rounding.UNSCALED
    config.direction = Direction.BOTH
    return config
