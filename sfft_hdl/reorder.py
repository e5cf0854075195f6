#
# Copyright (C) 2024 Daniel Estevez <daniel@destevez.net>
#
# This file is part of sfft-hdl
#
# SPDX-License-Identifier: MIT
#

from amaranth import *
from amaranth.lib.memory import Memory
import numpy as np

from .util import bit_reverse, is_power_of_two


class BlockReorder(Elaboratable):
    """Block reorderer

    This module permutes the pairs of each transform. Each input pair is
    written as one memory word into the current half of a ping-pong buffer,
    while the previous block is read from the other half through two read
    ports. The read schedule is given by the :meth:`source` method of the
    subclasses, and stored in an address ROM.

    Parameters
    ----------
    fft_size : int
        FFT size. Each block contains ``fft_size // 2`` pairs.
    width : int
        Width of the samples.
    counter_init : int
        Initial value of the write counter. The counter should be zero for
        the first pair of each transform.

    Attributes
    ----------
    delay : int
        Delay (in samples) introduced by this module.
    clken : Signal(), in
        Clock enable.
    vl_in : Signal(), in
        Input valid.
    re_a_in : Signal(signed(width)), in
        Real part of lane A input.
    im_a_in : Signal(signed(width)), in
        Imaginary part of lane A input.
    re_b_in : Signal(signed(width)), in
        Real part of lane B input.
    im_b_in : Signal(signed(width)), in
        Imaginary part of lane B input.
    vl_out : Signal(), out
        Output valid.
    re_a_out : Signal(signed(width)), out
        Real part of lane A output.
    im_a_out : Signal(signed(width)), out
        Imaginary part of lane A output.
    re_b_out : Signal(signed(width)), out
        Real part of lane B output.
    im_b_out : Signal(signed(width)), out
        Imaginary part of lane B output.
    """
    def __init__(self, fft_size, width, counter_init=0):
        if not is_power_of_two(fft_size) or fft_size < 4:
            raise ValueError(
                f'FFT size must be a power of two >= 4 (got {fft_size})')
        if width < 2:
            raise ValueError(f'data width {width} too small (minimum is 2)')
        self.fft_size = fft_size
        self.order_log2 = int(fft_size).bit_length() - 1
        self.block = fft_size // 2
        self.w = width
        self.counter_init = counter_init % fft_size

        self.clken = Signal()
        self.vl_in = Signal()
        self.re_a_in = Signal(signed(width))
        self.im_a_in = Signal(signed(width))
        self.re_b_in = Signal(signed(width))
        self.im_b_in = Signal(signed(width))
        self.vl_out = Signal()
        self.re_a_out = Signal(signed(width))
        self.im_a_out = Signal(signed(width))
        self.re_b_out = Signal(signed(width))
        self.im_b_out = Signal(signed(width))

    @property
    def delay(self):
        return self.block

    def source(self, slot):
        """Origin of the output pair in a given slot

        Returns ``((word_a, lane_a), (word_b, lane_b))``, where ``word_x``
        is the input slot (within the previous block) of the sample that is
        presented in output lane x, and ``lane_x`` is 0 if this sample was
        in input lane A or 1 if it was in input lane B.
        """
        raise NotImplementedError

    def schedule(self):
        return [self.source(t) for t in range(self.block)]

    def model(self, re_a, im_a, re_b, im_b):
        sched = self.schedule()
        words = [np.array([s[j][0] for s in sched]) for j in range(2)]
        lanes = [np.array([s[j][1] for s in sched]) for j in range(2)]
        re = np.stack([np.array(re_a).reshape(-1, self.block),
                       np.array(re_b).reshape(-1, self.block)], axis=1)
        im = np.stack([np.array(im_a).reshape(-1, self.block),
                       np.array(im_b).reshape(-1, self.block)], axis=1)
        out = [x[:, lanes[j], words[j]].ravel()
               for j in range(2) for x in [re, im]]
        return tuple(out)

    def elaborate(self, platform):
        m = Module()
        nbits = self.order_log2 - 1

        counter = Signal(self.order_log2, init=self.counter_init)
        slot = counter[:-1]
        bank = counter[-1]
        with m.If(self.clken):
            m.d.sync += counter.eq(counter + 1)

        m.submodules.buffer = buffer = Memory(
            shape=4 * self.w + 1, depth=self.fft_size, init=[])
        wrport = buffer.write_port()
        m.d.comb += [
            wrport.addr.eq(Cat(slot, bank)),
            wrport.data.eq(Cat(self.re_a_in, self.im_a_in,
                               self.re_b_in, self.im_b_in, self.vl_in)),
            wrport.en.eq(self.clken),
        ]

        # Address ROM. Each entry packs the input slot and lane of the
        # samples to read for lanes A and B.
        schedule = [
            wa | (la << nbits) | (wb << (nbits + 1)) | (lb << (2 * nbits + 1))
            for (wa, la), (wb, lb) in self.schedule()]
        m.submodules.schedule = schedule_mem = Memory(
            shape=2 * nbits + 2, depth=self.block, init=schedule,
            attrs={'ram_style': 'distributed'})
        schedule_rdport = schedule_mem.read_port(domain='comb')
        m.d.comb += schedule_rdport.addr.eq(slot)
        entry = schedule_rdport.data
        sources = [(entry[:nbits], entry[nbits]),
                   (entry[nbits + 1:2 * nbits + 1], entry[2 * nbits + 1])]

        w = self.w
        tokens = []
        outs = [(self.re_a_out, self.im_a_out), (self.re_b_out, self.im_b_out)]
        for (word, lane), (re_out, im_out) in zip(sources, outs):
            rdport = buffer.read_port(domain='comb')
            m.d.comb += rdport.addr.eq(Cat(word, ~bank))
            data = rdport.data
            sample = Mux(lane, data[2 * w:4 * w], data[:2 * w])
            m.d.comb += [
                re_out.eq(sample[:w].as_signed()),
                im_out.eq(sample[w:].as_signed()),
            ]
            tokens.append(data[-1])

        # The buffer is not cleared by reset, so the output valid is blocked
        # until a full block has been written.
        block_started = Signal()
        primed = Signal()
        with m.If(self.clken):
            with m.If(slot == 0):
                m.d.sync += block_started.eq(1)
            with m.If((slot == self.block - 1) & block_started):
                m.d.sync += primed.eq(1)
        m.d.comb += self.vl_out.eq(tokens[0] & tokens[1] & primed)
        return m


class HalfPathIngress(BlockReorder):
    """Input buffer of the forward transform

    Converts pairs of consecutive samples ``(x[2t], x[2t+1])`` into the
    butterfly pairs ``(x[t], x[t + fft_size//2])`` of the first
    decimation-in-frequency stage.
    """
    def source(self, slot):
        half = self.block // 2
        return (slot >> 1, slot & 1), ((slot >> 1) + half, slot & 1)


class HalfPathEgress(BlockReorder):
    """Output buffer of the inverse transform

    Converts the output pairs ``(y[t], y[t + fft_size//2])`` of the last
    decimation-in-time stage into pairs of consecutive samples
    ``(y[2t], y[2t+1])``.
    """
    def source(self, slot):
        return tuple((k % self.block, k // self.block)
                     for k in [2 * slot, 2 * slot + 1])


class BitReverse(BlockReorder):
    """Bit reversal reorderer

    Exchanges pairs of consecutive samples in natural order and pairs of
    consecutive samples in bit-reversed order. The permutation is an
    involution, so the same module is used at the output of the forward
    transform and at the input of the inverse transform.
    """
    def source(self, slot):
        r = bit_reverse(slot, self.order_log2 - 1)
        half = self.block // 2
        return (r >> 1, r & 1), ((r >> 1) + half, r & 1)
