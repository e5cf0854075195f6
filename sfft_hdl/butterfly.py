#
# Copyright (C) 2022-2024 Daniel Estevez <daniel@destevez.net>
#
# This file is part of sfft-hdl
#
# SPDX-License-Identifier: MIT
#

from amaranth import *
import numpy as np

from .cmult import Cmult
from .config import Rounding
from .twiddle import TwiddleROM
from .util import clamp_nbits, round_shift


class Butterfly(Elaboratable):
    """Radix-2 butterfly

    This module combines one pair of samples per clock cycle, presented in
    the A and B lanes. For the forward transform, it implements a
    decimation-in-frequency butterfly,

        a_out = a + b,   b_out = (a - b) * w,

    and for the inverse transform a decimation-in-time butterfly,

        a_out = a + b * w,   b_out = a - b * w.

    The twiddle factor ``w`` of the pair in slot ``t`` is
    ``exp(-+2j*pi*(t % 2**order)/2**(order+1))``. Depending on the order, the
    butterfly is implemented in one of three ways:

    * Order 0 (trivial): ``w`` is always 1, so only an add/subtract is
      needed.
    * Order 1 (unit rotation): ``w`` is 1 or -i (i for the inverse), which
      is applied by swapping the real and imaginary parts and negating one.
    * Order >= 2 (general): ``w`` is read from a :class:`TwiddleROM` and
      multiplied with a :class:`Cmult`.

    Parameters
    ----------
    order : int
        Order of the butterfly. The butterfly uses ``2**order`` distinct
        twiddle factors.
    width_in : int
        Width of the input samples.
    width_twiddle : int
        Width of the twiddle factors. Only used for order >= 2.
    rounding : Rounding
        Rounding policy. With ``Rounding.UNSCALED`` there is a bit growth of
        one bit (two bits for order >= 2). Otherwise, the output is divided
        by 2 and has the same width as the input.
    inverse : bool
        Selects the inverse transform (decimation-in-time butterfly).
    bypass : bool
        If True, the butterfly passes its inputs unmodified to its outputs,
        with the same delay.
    counter_init : int
        Initial value of the twiddle counter. The counter advances once per
        clock-enabled cycle and should be zero for the first pair of each
        transform.

    Attributes
    ----------
    delay : int
        Delay (in samples) introduced by this module.
    clken : Signal(), in
        Clock enable.
    vl_in : Signal(), in
        Input valid.
    re_a_in : Signal(signed(width_in)), in
        Real part of lane A input.
    im_a_in : Signal(signed(width_in)), in
        Imaginary part of lane A input.
    re_b_in : Signal(signed(width_in)), in
        Real part of lane B input.
    im_b_in : Signal(signed(width_in)), in
        Imaginary part of lane B input.
    vl_out : Signal(), out
        Output valid.
    re_a_out : Signal(signed(w_out)), out
        Real part of lane A output.
    im_a_out : Signal(signed(w_out)), out
        Imaginary part of lane A output.
    re_b_out : Signal(signed(w_out)), out
        Real part of lane B output.
    im_b_out : Signal(signed(w_out)), out
        Imaginary part of lane B output.
    """
    def __init__(self, order, width_in, width_twiddle=18,
                 rounding=Rounding.ROUNDING, inverse=False, bypass=False,
                 counter_init=0):
        if order < 0:
            raise ValueError(f'invalid butterfly order {order}')
        if not isinstance(rounding, Rounding):
            raise ValueError(f'invalid rounding policy {rounding!r}')
        if width_in < 2:
            raise ValueError(
                f'data width {width_in} too small (minimum is 2)')
        if order >= 2 and width_twiddle < 3:
            raise ValueError(
                f'twiddle width {width_twiddle} too small (minimum is 3)')
        self.order = order
        self.w = width_in
        self.tw = width_twiddle
        self.rounding = rounding
        self.inverse = inverse
        self.bypass = bypass
        self.w_out = width_in + rounding.growth(order)
        self.counter_init = counter_init % 2**order

        if self.variant == 'general':
            self.twiddles = TwiddleROM(order, width_twiddle, inverse)
            self.cmult = Cmult(
                a_width=self.w if inverse else self.w + 1,
                b_width=width_twiddle)

        self.clken = Signal()
        self.vl_in = Signal()
        self.re_a_in = Signal(signed(self.w))
        self.im_a_in = Signal(signed(self.w))
        self.re_b_in = Signal(signed(self.w))
        self.im_b_in = Signal(signed(self.w))
        self.vl_out = Signal()
        self.re_a_out = Signal(signed(self.w_out), reset_less=True)
        self.im_a_out = Signal(signed(self.w_out), reset_less=True)
        self.re_b_out = Signal(signed(self.w_out), reset_less=True)
        self.im_b_out = Signal(signed(self.w_out), reset_less=True)

    @property
    def variant(self):
        return {0: 'trivial', 1: 'unit'}.get(self.order, 'general')

    @property
    def delay(self):
        if self.variant == 'general':
            return 1 + self.cmult.delay
        return 1

    @property
    def shift(self):
        return 1 if self.rounding.scaled else 0

    def model(self, re_a, im_a, re_b, im_b):
        re_a, im_a, re_b, im_b = (
            np.array(x, 'int') for x in [re_a, im_a, re_b, im_b])
        if self.bypass:
            return tuple(clamp_nbits(x, self.w_out)
                         for x in [re_a, im_a, re_b, im_b])
        t = np.arange(re_a.size) % 2**self.order
        s = self.shift
        r = self.rounding
        if self.variant == 'general':
            tw_re, tw_im = (np.array(x, 'int')[t]
                            for x in self.twiddles.table())
            k = self.twiddles.scale_clog2
            if not self.inverse:
                p_re, p_im = Cmult.model(
                    re_a - re_b, im_a - im_b, tw_re, tw_im)
                out = [round_shift(re_a + re_b, s, r),
                       round_shift(im_a + im_b, s, r),
                       round_shift(p_re, k + s, r),
                       round_shift(p_im, k + s, r)]
            else:
                p_re, p_im = Cmult.model(re_b, im_b, tw_re, tw_im)
                re_a_s, im_a_s = re_a << k, im_a << k
                out = [round_shift(re_a_s + p_re, k + s, r),
                       round_shift(im_a_s + p_im, k + s, r),
                       round_shift(re_a_s - p_re, k + s, r),
                       round_shift(im_a_s - p_im, k + s, r)]
        else:
            rot = t == 1
            if not self.inverse:
                d_re, d_im = re_a - re_b, im_a - im_b
                # multiplication by -i
                d_re, d_im = (np.where(rot, d_im, d_re),
                              np.where(rot, -d_re, d_im))
                out = [re_a + re_b, im_a + im_b, d_re, d_im]
            else:
                # multiplication by i
                rb_re, rb_im = (np.where(rot, -im_b, re_b),
                                np.where(rot, re_b, im_b))
                out = [re_a + rb_re, im_a + rb_im,
                       re_a - rb_re, im_a - rb_im]
            out = [round_shift(x, s, r) for x in out]
        return tuple(clamp_nbits(x, self.w_out) for x in out)

    def elaborate(self, platform):
        m = Module()

        vl_delay = Signal(self.delay)
        with m.If(self.clken):
            m.d.sync += vl_delay.eq(Cat(self.vl_in, vl_delay[:-1]))
        m.d.comb += self.vl_out.eq(vl_delay[-1])

        ins = [self.re_a_in, self.im_a_in, self.re_b_in, self.im_b_in]
        outs = [self.re_a_out, self.im_a_out, self.re_b_out, self.im_b_out]

        if self.bypass:
            regs = [[Signal(signed(self.w), name=f'bypass{j}_q{k}',
                            reset_less=True)
                     for k in range(self.delay)]
                    for j in range(len(ins))]
            with m.If(self.clken):
                m.d.sync += [q[0].eq(x) for q, x in zip(regs, ins)]
                m.d.sync += [q[k].eq(q[k - 1])
                             for q in regs for k in range(1, self.delay)]
            m.d.comb += [y.eq(q[-1]) for q, y in zip(regs, outs)]
            return m

        if self.order >= 1:
            counter = Signal(self.order, init=self.counter_init)
            with m.If(self.clken):
                m.d.sync += counter.eq(counter + 1)

        if self.variant == 'general':
            self.elaborate_general(m, counter)
        else:
            self.elaborate_adder(m, counter if self.order == 1 else None)
        return m

    def elaborate_adder(self, m, counter):
        s = self.shift
        r = self.rounding
        re_a, im_a = self.re_a_in, self.im_a_in
        re_b, im_b = self.re_b_in, self.im_b_in
        if not self.inverse:
            d_re = re_a - re_b
            d_im = im_a - im_b
            if counter is not None:
                # multiplication by -i
                d_re, d_im = (Mux(counter[0], d_im, d_re),
                              Mux(counter[0], -d_re, d_im))
            results = [re_a + re_b, im_a + im_b, d_re, d_im]
        else:
            if counter is not None:
                # multiplication by i
                re_b, im_b = (Mux(counter[0], -im_b, re_b),
                              Mux(counter[0], re_b, im_b))
            results = [re_a + re_b, im_a + im_b, re_a - re_b, im_a - im_b]
        outs = [self.re_a_out, self.im_a_out, self.re_b_out, self.im_b_out]
        with m.If(self.clken):
            m.d.sync += [y.eq(round_shift(x, s, r))
                         for x, y in zip(results, outs)]

    def elaborate_general(self, m, counter):
        s = self.shift
        r = self.rounding
        m.submodules.twiddles = twiddles = self.twiddles
        m.submodules.cmult = cmult = self.cmult
        k = twiddles.scale_clog2
        m.d.comb += [
            twiddles.index.eq(counter),
            cmult.clken.eq(self.clken),
        ]

        if not self.inverse:
            # a + b is delayed to match the latency of (a - b) * w
            wd = self.w + 1
            sum_re, sum_im = (
                [Signal(signed(wd), name=f'sum_{c}_q{j}', reset_less=True)
                 for j in range(1 + cmult.delay)]
                for c in ['re', 'im'])
            diff_re = Signal(signed(wd), reset_less=True)
            diff_im = Signal(signed(wd), reset_less=True)
            twiddle_re = Signal(signed(self.tw), reset_less=True)
            twiddle_im = Signal(signed(self.tw), reset_less=True)
            with m.If(self.clken):
                m.d.sync += [
                    sum_re[0].eq(self.re_a_in + self.re_b_in),
                    sum_im[0].eq(self.im_a_in + self.im_b_in),
                    diff_re.eq(self.re_a_in - self.re_b_in),
                    diff_im.eq(self.im_a_in - self.im_b_in),
                    twiddle_re.eq(twiddles.re_out),
                    twiddle_im.eq(twiddles.im_out),
                ]
                m.d.sync += [q[j].eq(q[j - 1])
                             for q in [sum_re, sum_im]
                             for j in range(1, len(q))]
            m.d.comb += [
                cmult.re_a.eq(diff_re),
                cmult.im_a.eq(diff_im),
                cmult.re_b.eq(twiddle_re),
                cmult.im_b.eq(twiddle_im),
                self.re_a_out.eq(round_shift(sum_re[-1], s, r)),
                self.im_a_out.eq(round_shift(sum_im[-1], s, r)),
                self.re_b_out.eq(round_shift(cmult.re_out, k + s, r)),
                self.im_b_out.eq(round_shift(cmult.im_out, k + s, r)),
            ]
        else:
            # a is delayed to match the latency of b * w
            a_re, a_im = (
                [Signal(signed(self.w), name=f'a_{c}_q{j}', reset_less=True)
                 for j in range(cmult.delay)]
                for c in ['re', 'im'])
            m.d.comb += [
                cmult.re_a.eq(self.re_b_in),
                cmult.im_a.eq(self.im_b_in),
                cmult.re_b.eq(twiddles.re_out),
                cmult.im_b.eq(twiddles.im_out),
            ]
            # a is scaled to the fixed point scale of the twiddle factors
            a_re_s = a_re[-1] << k
            a_im_s = a_im[-1] << k
            with m.If(self.clken):
                m.d.sync += [
                    a_re[0].eq(self.re_a_in),
                    a_im[0].eq(self.im_a_in),
                ]
                m.d.sync += [q[j].eq(q[j - 1])
                             for q in [a_re, a_im]
                             for j in range(1, len(q))]
                m.d.sync += [
                    self.re_a_out.eq(
                        round_shift(a_re_s + cmult.re_out, k + s, r)),
                    self.im_a_out.eq(
                        round_shift(a_im_s + cmult.im_out, k + s, r)),
                    self.re_b_out.eq(
                        round_shift(a_re_s - cmult.re_out, k + s, r)),
                    self.im_b_out.eq(
                        round_shift(a_im_s - cmult.im_out, k + s, r)),
                ]
