#
# Copyright (C) 2024 Daniel Estevez <daniel@destevez.net>
#
# This file is part of sfft-hdl
#
# SPDX-License-Identifier: MIT
#

from amaranth import *
import numpy as np

from .bank import Bank


class CrossCommutator(Elaboratable):
    """Cross commutator between two butterflies

    The commutator regroups the two lanes of the pipeline so that the next
    butterfly receives the pairs it must combine. The stream of each lane is
    divided in chunks of ``2**order`` samples. Within each group of two
    chunks, the second chunk of lane A is exchanged with the first chunk of
    lane B::

        lane A: A0 A1  ->  A0 B0
        lane B: B0 B1  ->  A1 B1

    This is done with two delay lines of ``2**order`` samples. The B input is
    always delayed. The delayed B and the undelayed A are then exchanged or
    passed straight according to a counter, and the new lane A is delayed
    again to align it with the new lane B.

    Parameters
    ----------
    order : int
        Base-2 logarithm of the chunk size.
    width : int
        Width of the samples.
    counter_init : int
        Initial value of the commutation counter. The counter should be zero
        for the first pair of each transform.

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
    def __init__(self, order, width, counter_init=0):
        if order < 0:
            raise ValueError(f'invalid commutator order {order}')
        if width < 2:
            raise ValueError(f'data width {width} too small (minimum is 2)')
        self.order = order
        self.w = width
        self.chunk = 2**order
        self.counter_init = counter_init % (2 * self.chunk)

        self.clken = Signal()
        self.vl_in = Signal()
        self.re_a_in = Signal(signed(width))
        self.im_a_in = Signal(signed(width))
        self.re_b_in = Signal(signed(width))
        self.im_b_in = Signal(signed(width))
        self.vl_out = Signal()
        self.re_a_out = Signal(signed(width), reset_less=True)
        self.im_a_out = Signal(signed(width), reset_less=True)
        self.re_b_out = Signal(signed(width), reset_less=True)
        self.im_b_out = Signal(signed(width), reset_less=True)

    @property
    def delay(self):
        return self.chunk + 1

    def model(self, re_a, im_a, re_b, im_b):
        d = self.chunk
        a = [np.array(x).reshape(-1, 2, d) for x in [re_a, im_a]]
        b = [np.array(x).reshape(-1, 2, d) for x in [re_b, im_b]]
        out_a = [np.concatenate((x[:, 0], y[:, 0]), axis=1).ravel()
                 for x, y in zip(a, b)]
        out_b = [np.concatenate((x[:, 1], y[:, 1]), axis=1).ravel()
                 for x, y in zip(a, b)]
        return out_a[0], out_a[1], out_b[0], out_b[1]

    def elaborate(self, platform):
        m = Module()

        counter = Signal(self.order + 1, init=self.counter_init)
        crossed = counter[-1]
        addr = counter[:-1]
        with m.If(self.clken):
            m.d.sync += counter.eq(counter + 1)

        m.submodules.bank_b = bank_b = Bank(2 * self.w, self.chunk)
        # the new lane A is stored together with the valid, so that the
        # output valid has the same delay as the data
        m.submodules.bank_a = bank_a = Bank(2 * self.w + 1, self.chunk)
        for bank in [bank_a, bank_b]:
            m.d.comb += bank.clken.eq(self.clken)
            if self.chunk > 1:
                m.d.comb += bank.addr.eq(addr)

        a_in = Cat(self.re_a_in, self.im_a_in)
        m.d.comb += bank_b.w_data.eq(Cat(self.re_b_in, self.im_b_in))
        b_delay = bank_b.r_data
        new_a = Mux(crossed, b_delay, a_in)
        new_b = Mux(crossed, a_in, b_delay)
        m.d.comb += bank_a.w_data.eq(Cat(new_a, self.vl_in))
        a_delay = bank_a.r_data

        # The banks are not cleared by reset, so the output valid is
        # blocked until all the addresses have been written once.
        primed = Signal()
        if self.chunk > 1:
            last_addr = (self.counter_init - 1) % self.chunk
            with m.If(self.clken & (addr == last_addr)):
                m.d.sync += primed.eq(1)
        else:
            with m.If(self.clken):
                m.d.sync += primed.eq(1)

        with m.If(self.clken):
            m.d.sync += [
                self.re_a_out.eq(a_delay[:self.w].as_signed()),
                self.im_a_out.eq(a_delay[self.w:2*self.w].as_signed()),
                self.re_b_out.eq(new_b[:self.w].as_signed()),
                self.im_b_out.eq(new_b[self.w:].as_signed()),
                self.vl_out.eq(a_delay[-1] & primed),
            ]
        return m
