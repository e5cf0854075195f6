#
# Copyright (C) 2022-2024 Daniel Estevez <daniel@destevez.net>
#
# This file is part of sfft-hdl
#
# SPDX-License-Identifier: MIT
#

from amaranth import *
from amaranth.lib import enum
import amaranth.back.verilog
import numpy as np

import argparse
import logging

from . import configs
from .butterfly import Butterfly
from .commutator import CrossCommutator
from .config import Commutation, Direction, Rounding
from .reorder import BitReverse, HalfPathEgress, HalfPathIngress
from .util import is_power_of_two

logger = logging.getLogger(__name__)


class Radix2Pipeline(Elaboratable):
    """Radix-2 FFT pipeline

    This module chains the stages of a radix-2 FFT that processes two
    samples per clock cycle. The forward transform uses decimation in
    frequency::

        HalfPathIngress -> Butterfly(S-1) -> CrossCommutator(S-2) -> ...
            -> CrossCommutator(0) -> Butterfly(0) -> BitReverse

    and the inverse transform uses decimation in time::

        BitReverse -> Butterfly(0) -> CrossCommutator(0) -> ...
            -> CrossCommutator(S-2) -> Butterfly(S-1) -> HalfPathEgress

    where ``S = log2(fft_size)``. The input and the output are pairs of
    consecutive samples in natural order.

    The counters of each stage are initialized according to the delay from
    the pipeline input to the stage, so that after reset the counters are
    aligned with the transform boundaries.

    Parameters
    ----------
    fft_size : int
        FFT size.
    width_in : int
        Input width.
    width_twiddle : int
        Width of the twiddle factors.
    rounding : Rounding
        Rounding policy of the butterflies.
    inverse : bool
        Selects the inverse transform.
    bypass : bool
        Bypasses the butterflies, so that the pipeline only reorders its
        input.

    Attributes
    ----------
    delay : int
        Delay (in samples) introduced by this module.
    width_out : int
        Output width.
    clken : Signal(), in
        Clock enable.
    vl_in : Signal(), in
        Input valid.
    re_a_in : Signal(signed(width_in)), in
        Real part of the even input sample.
    im_a_in : Signal(signed(width_in)), in
        Imaginary part of the even input sample.
    re_b_in : Signal(signed(width_in)), in
        Real part of the odd input sample.
    im_b_in : Signal(signed(width_in)), in
        Imaginary part of the odd input sample.
    vl_out : Signal(), out
        Output valid.
    re_a_out : Signal(signed(width_out)), out
        Real part of the even output sample.
    im_a_out : Signal(signed(width_out)), out
        Imaginary part of the even output sample.
    re_b_out : Signal(signed(width_out)), out
        Real part of the odd output sample.
    im_b_out : Signal(signed(width_out)), out
        Imaginary part of the odd output sample.
    """
    def __init__(self, fft_size, width_in, width_twiddle=18,
                 rounding=Rounding.ROUNDING, inverse=False, bypass=False):
        if not is_power_of_two(fft_size) or fft_size < 4:
            raise ValueError(
                f'FFT size must be a power of two >= 4 (got {fft_size})')
        self.fft_size = fft_size
        self.order_log2 = order_log2 = int(fft_size).bit_length() - 1
        self.inverse = inverse

        self.stages = []
        latency = 0
        w = width_in

        def add(stage):
            nonlocal latency
            self.stages.append(stage)
            latency += stage.delay

        if not inverse:
            add(HalfPathIngress(fft_size, w))
            orders = range(order_log2 - 1, -1, -1)
        else:
            add(BitReverse(fft_size, w))
            orders = range(order_log2)
        for order in orders:
            bfly = Butterfly(
                order, w, width_twiddle, rounding=rounding,
                inverse=inverse, bypass=bypass, counter_init=-latency)
            add(bfly)
            w = bfly.w_out
            commutator_order = order - 1 if not inverse else order
            if 0 <= commutator_order < order_log2 - 1:
                add(CrossCommutator(commutator_order, w, counter_init=-latency))
        if not inverse:
            add(BitReverse(fft_size, w, counter_init=-latency))
        else:
            add(HalfPathEgress(fft_size, w, counter_init=-latency))
        self.width_out = w

        self.clken = Signal()
        self.vl_in = Signal()
        self.re_a_in = Signal(signed(width_in))
        self.im_a_in = Signal(signed(width_in))
        self.re_b_in = Signal(signed(width_in))
        self.im_b_in = Signal(signed(width_in))
        self.vl_out = Signal()
        self.re_a_out = Signal(signed(w))
        self.im_a_out = Signal(signed(w))
        self.re_b_out = Signal(signed(w))
        self.im_b_out = Signal(signed(w))

    @property
    def delay(self):
        return sum([stage.delay for stage in self.stages])

    @property
    def butterflies(self):
        return [stage for stage in self.stages
                if isinstance(stage, Butterfly)]

    def model(self, re_a, im_a, re_b, im_b):
        x = re_a, im_a, re_b, im_b
        for stage in self.stages:
            x = stage.model(*x)
        return x

    def elaborate(self, platform):
        m = Module()
        for j, stage in enumerate(self.stages):
            m.submodules[f'stage{j}'] = stage
            m.d.comb += stage.clken.eq(self.clken)

        ports = ['vl', 're_a', 'im_a', 're_b', 'im_b']
        m.d.comb += [getattr(self.stages[0], f'{p}_in').eq(
            getattr(self, f'{p}_in')) for p in ports]
        for prev, stage in zip(self.stages[:-1], self.stages[1:]):
            m.d.comb += [getattr(stage, f'{p}_in').eq(
                getattr(prev, f'{p}_out')) for p in ports]
        m.d.comb += [getattr(self, f'{p}_out').eq(
            getattr(self.stages[-1], f'{p}_out')) for p in ports]
        return m


class FFTState(enum.Enum, shape=unsigned(2)):
    IDLE = 0
    LOADING = 1
    STREAMING = 2
    DRAINING = 3


class FFT(Elaboratable):
    """Streaming FFT/IFFT

    This module computes transforms of size ``config.fft_size`` on a stream
    of complex samples that is presented two samples at a time. On each
    cycle where ``valid_in`` is asserted, ``(re_a_in, im_a_in)`` and
    ``(re_b_in, im_b_in)`` are two consecutive samples of a transform. The
    output uses the same representation, in natural order, and each output
    pair is presented exactly once, in the cycle where ``valid_out`` is
    asserted.

    The pipeline only advances when a valid input is presented or while it
    is being drained. Draining starts at a transform boundary with no valid
    input, when ``flush`` is asserted (bursting commutation) or
    automatically (continuous commutation). While draining, the pipeline
    advances with zeros until all the valid samples have been output and
    the pipeline is aligned again to a transform boundary. ``flush`` has no
    effect in the middle of a transform.

    With continuous commutation, the input valid must span whole transforms
    and the gaps between bursts must also be whole transforms, unless the
    pipeline has finished draining. With bursting commutation, the input
    valid can have gaps anywhere, but a new burst must not start in the
    middle of a transform while the pipeline is draining.

    Allowed input values:

    In order to prevent internal overflows after the twiddle factor
    multiplications, for the scaled rounding policies the input must have
    complex amplitude smaller or equal than 2**(width_in-1)-1 (the complex
    amplitude is defined as sqrt(re**2 + im**2)).

    Parameters
    ----------
    config : FFTConfig
        FFT configuration.

    Attributes
    ----------
    delay : int
        Delay (in advance cycles) from input to output of the FFT.
    reset : Signal(), in
        Synchronous reset. The memories are not cleared, but their contents
        are masked until they are overwritten.
    valid_in : Signal(), in
        Input valid.
    flush : Signal(), in
        Drain request (bursting commutation).
    inverse : Signal(), in
        Selects the inverse transform. This is only present if the direction
        is ``Direction.BOTH``. It must only be changed while ``reset`` is
        asserted.
    re_a_in : Signal(signed(width_in)), in
        Real part of the even input sample.
    im_a_in : Signal(signed(width_in)), in
        Imaginary part of the even input sample.
    re_b_in : Signal(signed(width_in)), in
        Real part of the odd input sample.
    im_b_in : Signal(signed(width_in)), in
        Imaginary part of the odd input sample.
    valid_out : Signal(), out
        Output valid.
    re_a_out : Signal(signed(width_out)), out
        Real part of the even output sample.
    im_a_out : Signal(signed(width_out)), out
        Imaginary part of the even output sample.
    re_b_out : Signal(signed(width_out)), out
        Real part of the odd output sample.
    im_b_out : Signal(signed(width_out)), out
        Imaginary part of the odd output sample.
    state : Signal(FFTState), out
        State of the pipeline.
    strobe_error : Signal(), out
        This signal is asserted (and held until reset) if the input valid
        drops in the middle of a transform in continuous commutation, or if
        a valid input is presented in the middle of a transform while the
        pipeline is draining.
    """
    def __init__(self, config):
        config.validate()
        self.config = config
        self.fft_size = config.fft_size
        self.order_log2 = config.order_log2

        self._pipelines = {}
        for inverse in [False, True]:
            if (config.inverse_capable if inverse
                    else config.forward_capable):
                self._pipelines[inverse] = Radix2Pipeline(
                    config.fft_size, config.width_in, config.width_twiddle,
                    rounding=config.rounding, inverse=inverse,
                    bypass=config.bypass)

        self.reset = Signal()
        self.valid_in = Signal()
        self.flush = Signal()
        if config.direction == Direction.BOTH:
            self.inverse = Signal()
        self.re_a_in = Signal(signed(config.width_in))
        self.im_a_in = Signal(signed(config.width_in))
        self.re_b_in = Signal(signed(config.width_in))
        self.im_b_in = Signal(signed(config.width_in))
        self.valid_out = Signal()
        self.width_out = config.width_out
        self.re_a_out = Signal(signed(self.width_out))
        self.im_a_out = Signal(signed(self.width_out))
        self.re_b_out = Signal(signed(self.width_out))
        self.im_b_out = Signal(signed(self.width_out))
        self.state = Signal(FFTState)
        self.strobe_error = Signal()

    @property
    def delay(self):
        # forward and inverse pipelines have the same delay
        return next(iter(self._pipelines.values())).delay

    def ports(self):
        ports = [self.reset, self.valid_in, self.flush]
        if self.config.direction == Direction.BOTH:
            ports.append(self.inverse)
        ports += [
            self.re_a_in, self.im_a_in, self.re_b_in, self.im_b_in,
            self.valid_out,
            self.re_a_out, self.im_a_out, self.re_b_out, self.im_b_out,
            self.state.as_value(), self.strobe_error,
        ]
        return ports

    def model(self, re_in, im_in, inverse=False):
        """Bit-exact model of the transform

        ``re_in`` and ``im_in`` contain a whole number of transforms of
        samples in natural order. The output is also in natural order.
        """
        if inverse not in self._pipelines:
            direction = 'inverse' if inverse else 'forward'
            raise ValueError(
                f'{direction} transform not supported by this configuration')
        re_in, im_in = (np.array(x, 'int') for x in [re_in, im_in])
        if re_in.size % self.fft_size != 0:
            raise ValueError(
                f'input length {re_in.size} is not a multiple of the FFT '
                f'size {self.fft_size}')
        re_a, im_a, re_b, im_b = self._pipelines[inverse].model(
            re_in[::2], im_in[::2], re_in[1::2], im_in[1::2])
        re_out, im_out = (np.empty(re_in.size, 'int') for _ in range(2))
        re_out[::2], re_out[1::2] = re_a, re_b
        im_out[::2], im_out[1::2] = im_a, im_b
        return re_out, im_out

    def elaborate(self, platform):
        m = Module()
        for inverse, pipeline in self._pipelines.items():
            m.submodules['ifft' if inverse else 'fft'] = pipeline
        if self.config.direction == Direction.BOTH:
            select = self.inverse
        else:
            select = C(self.config.direction == Direction.INVERSE_ONLY, 1)

        # position within the transform, in pairs
        phase = Signal(self.order_log2 - 1)
        # valid pairs that have entered the pipeline and not been output yet
        in_flight = Signal(range(self.delay + 2))
        frame_start = phase == 0
        running = ((self.state == FFTState.LOADING)
                   | (self.state == FFTState.STREAMING))
        draining = self.state == FFTState.DRAINING
        done = (in_flight == 0) & frame_start

        if self.config.commutation == Commutation.CONTINUOUS:
            drain_request = C(1, 1)
        else:
            drain_request = self.flush
        drain_start = Signal()
        advance = Signal()
        pipeline_vl_out = Signal()
        m.d.comb += [
            drain_start.eq(
                running & ~self.valid_in & frame_start & drain_request),
            advance.eq(self.valid_in | drain_start | (draining & ~done)),
            self.valid_out.eq(advance & pipeline_vl_out),
        ]

        ports = ['re_a', 'im_a', 're_b', 'im_b']
        for inverse, pipeline in self._pipelines.items():
            selected = select if inverse else ~select
            m.d.comb += [
                pipeline.clken.eq(advance & selected),
                pipeline.vl_in.eq(self.valid_in),
            ]
            m.d.comb += [
                getattr(pipeline, f'{p}_in').eq(
                    Mux(self.valid_in, getattr(self, f'{p}_in'), 0))
                for p in ports]
            with m.If(selected):
                m.d.comb += pipeline_vl_out.eq(pipeline.vl_out)
                m.d.comb += [getattr(self, f'{p}_out').eq(
                    getattr(pipeline, f'{p}_out')) for p in ports]

        with m.If(advance):
            m.d.sync += phase.eq(phase + 1)
        with m.If(self.valid_in & ~self.valid_out):
            m.d.sync += in_flight.eq(in_flight + 1)
        with m.Elif(~self.valid_in & self.valid_out):
            m.d.sync += in_flight.eq(in_flight - 1)

        with m.Switch(self.state):
            with m.Case(FFTState.IDLE):
                with m.If(self.valid_in):
                    m.d.sync += self.state.eq(FFTState.LOADING)
            with m.Case(FFTState.LOADING, FFTState.STREAMING):
                with m.If(self.valid_out):
                    m.d.sync += self.state.eq(FFTState.STREAMING)
                with m.If(drain_start):
                    m.d.sync += self.state.eq(FFTState.DRAINING)
            with m.Case(FFTState.DRAINING):
                with m.If(self.valid_in & frame_start):
                    with m.If(in_flight == 0):
                        m.d.sync += self.state.eq(FFTState.LOADING)
                    with m.Else():
                        m.d.sync += self.state.eq(FFTState.STREAMING)
                with m.Elif(done):
                    m.d.sync += self.state.eq(FFTState.IDLE)

        if self.config.commutation == Commutation.CONTINUOUS:
            with m.If(running & ~self.valid_in & ~frame_start):
                m.d.sync += self.strobe_error.eq(1)
        with m.If(draining & self.valid_in & ~frame_start):
            m.d.sync += self.strobe_error.eq(1)

        return ResetInserter({'sync': self.reset})(m)


def gen_verilog(config, output_file, name='sfft'):
    top = FFT(config)
    logger.info('generating %d-point %s FFT (delay %d cycles, output '
                'width %d)', config.fft_size, config.direction.name,
                top.delay, top.width_out)
    with open(output_file, 'w') as f:
        f.write(amaranth.back.verilog.convert(
            top, name=name, ports=top.ports(), emit_src=False))
    logger.info('wrote verilog to %s', output_file)


def parse_args():
    parser = argparse.ArgumentParser()
    parser.add_argument(
        '--config', default='default',
        help='FFT configuration name [default=%(default)r]')
    parser.add_argument(
        '--name', default='sfft',
        help='Verilog module name [default=%(default)r]')
    parser.add_argument(
        'output_file', help='Output verilog file')
    return parser.parse_args()


def main():
    logging.basicConfig(
        level=logging.INFO, format='%(levelname)s %(name)s: %(message)s')
    args = parse_args()
    try:
        config = getattr(configs, args.config)()
    except AttributeError:
        raise SystemExit(f'unknown configuration {args.config!r}')
    gen_verilog(config, args.output_file, name=args.name)


if __name__ == '__main__':
    main()
