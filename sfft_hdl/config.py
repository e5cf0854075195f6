#
# Copyright (C) 2024 Daniel Estevez <daniel@destevez.net>
#
# This file is part of sfft-hdl
#
# SPDX-License-Identifier: MIT
#

from enum import Enum
import enum

import numpy as np

from .util import is_power_of_two


class Rounding(Enum):
    """Scaling and rounding policy of the butterflies

    The policy is selected once for the whole transform and applied
    identically by every stage.
    """
    UNSCALED = enum.auto()
    ROUNDING = enum.auto()
    TRUNCATE = enum.auto()

    @property
    def scaled(self):
        """Whether each stage divides its output by 2"""
        return self != Rounding.UNSCALED

    @property
    def rounds(self):
        """Whether dropped LSBs are rounded to nearest (or floored)"""
        return self != Rounding.TRUNCATE

    def growth(self, order):
        """Bit growth of a butterfly of the given order"""
        if self.scaled:
            return 0
        # One bit for the add/subtract, and one more for the real
        # multiplication of the general butterflies.
        return 1 if order < 2 else 2


class Commutation(Enum):
    # The input strobe spans whole contiguous frames. The pipeline drains
    # automatically at the end of each burst of frames.
    CONTINUOUS = enum.auto()
    # The input strobe may have gaps anywhere. The pipeline only advances
    # with valid samples and is drained with the flush input.
    BURSTING = enum.auto()


class Direction(Enum):
    FORWARD_ONLY = enum.auto()
    INVERSE_ONLY = enum.auto()
    BOTH = enum.auto()


class FFTConfig:
    """Streaming FFT configuration

    This class defines the build-time parameters of an :class:`FFT`. All of
    them are fixed for the lifetime of the generated pipeline.
    """
    def __init__(self):
        # create default configuration
        self.fft_size = 1024
        self.width_in = 16
        self.width_twiddle = 18
        self.rounding = Rounding.ROUNDING
        self.commutation = Commutation.CONTINUOUS
        self.direction = Direction.FORWARD_ONLY
        # pass-through butterflies, for testing the reordering network
        self.bypass = False

    @property
    def order_log2(self):
        return int(self.fft_size).bit_length() - 1

    @property
    def stage_widths(self):
        """Data width at the input of each butterfly, plus output width"""
        widths = [self.width_in]
        for order in range(self.order_log2):
            widths.append(widths[-1] + self.rounding.growth(order))
        return widths

    @property
    def width_out(self):
        return self.stage_widths[-1]

    @property
    def inverse_capable(self):
        return self.direction != Direction.FORWARD_ONLY

    @property
    def forward_capable(self):
        return self.direction != Direction.INVERSE_ONLY

    def validate(self):
        if not is_power_of_two(self.fft_size):
            raise ValueError(
                f'FFT size must be a power of two (got {self.fft_size})')
        if self.fft_size < 4:
            raise ValueError(
                f'FFT size must be at least 4 (got {self.fft_size})')
        if self.width_in < 2:
            raise ValueError(
                f'data width {self.width_in} too small (minimum is 2)')
        if self.width_twiddle < 3:
            raise ValueError(
                f'twiddle width {self.width_twiddle} too small '
                '(minimum is 3)')
        for attr, cls in [('rounding', Rounding),
                          ('commutation', Commutation),
                          ('direction', Direction)]:
            if not isinstance(getattr(self, attr), cls):
                raise ValueError(
                    f'invalid {attr}: {getattr(self, attr)!r}')

    def check_strobe(self, strobe):
        """Checks an input strobe pattern against the commutation mode

        ``strobe`` is the sequence of ``valid_in`` values, one per clock
        cycle. In continuous mode, the strobe must be made of bursts of whole
        frames (``fft_size // 2`` cycles each), separated by gaps that are
        also whole frames. A ``ValueError`` is raised otherwise. Any pattern
        is accepted in bursting mode.
        """
        if self.commutation == Commutation.BURSTING:
            return
        strobe = np.asarray(strobe, 'bool')
        frame = self.fft_size // 2
        edges = np.diff(np.concatenate(([False], strobe, [False])).astype(int))
        starts = np.where(edges == 1)[0]
        ends = np.where(edges == -1)[0]
        for start, end in zip(starts, ends):
            if (end - start) % frame != 0:
                raise ValueError(
                    f'non-contiguous strobe in continuous mode: burst of '
                    f'{end - start} cycles at cycle {start} is not a whole '
                    f'number of {frame}-cycle frames')
        for end, start in zip(ends[:-1], starts[1:]):
            if (start - end) % frame != 0:
                raise ValueError(
                    f'misaligned strobe in continuous mode: gap of '
                    f'{start - end} cycles at cycle {end} is not a whole '
                    f'number of {frame}-cycle frames')
