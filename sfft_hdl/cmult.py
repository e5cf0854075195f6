#
# Copyright (C) 2022-2023 Daniel Estevez <daniel@destevez.net>
#
# This file is part of sfft-hdl
#
# SPDX-License-Identifier: MIT
#

from amaranth import *
import numpy as np


# This is based on Xilinx template for the complex multiplier using DSP48e's.
class Cmult(Elaboratable):
    """Complex multiplier

    A complex multiplier that uses 3 multipliers in pipeline to work at one
    sample per clock cycle. It is based on the Xilinx Verilog template for the
    complex multiplier using DSP48e's.

    The product is exact: no rounding or truncation is done in the
    multiplier. Dropping LSBs is left to the user of the product.

    Parameters
    ----------
    a_width : int
        Width of operand 'a'.
    b_width : int
        Width of operand 'b'.

    Attributes
    ----------
    delay : int
        Delay (in samples) introduced by this module.
    clken : Signal(), in
        Clock enable.
    re_a : Signal(signed(a_width)), in
        Real part of operand 'a'.
    im_a : Signal(signed(a_width)), in
        Imaginary part of operand 'a'.
    re_b : Signal(signed(b_width)), in
        Real part of operand 'b'.
    im_b : Signal(signed(b_width)), in
        Imaginary part of operand 'b'.
    re_out : Signal(signed(a_width + b_width + 1)), out
        Real part of result 'a * b'.
    im_out : Signal(signed(a_width + b_width + 1)), out
        Imaginary part of result 'a * b'.
    """
    def __init__(self, a_width, b_width):
        self.aw = a_width
        self.bw = b_width
        self.outw = self.aw + self.bw + 1

        self.clken = Signal()
        self.re_a = Signal(signed(self.aw))
        self.im_a = Signal(signed(self.aw))
        self.re_b = Signal(signed(self.bw))
        self.im_b = Signal(signed(self.bw))
        self.re_out = Signal(signed(self.outw))
        self.im_out = Signal(signed(self.outw))

    @property
    def delay(self):
        return 6

    @staticmethod
    def model(re_a, im_a, re_b, im_b):
        re_a, im_a, re_b, im_b = (
            np.asarray(x, 'int') for x in [re_a, im_a, re_b, im_b])
        return re_a * re_b - im_a * im_b, re_a * im_b + im_a * re_b

    def elaborate(self, platform):
        m = Module()
        re_a_q = [Signal(signed(self.aw), name=f're_a_q{i+1}',
                         reset_less=True)
                  for i in range(4)]
        im_a_q = [Signal(signed(self.aw), name=f'im_a_q{i+1}',
                         reset_less=True)
                  for i in range(4)]
        re_b_q = [Signal(signed(self.bw), name=f're_b_q{i+1}',
                         reset_less=True)
                  for i in range(3)]
        im_b_q = [Signal(signed(self.bw), name=f'im_b_q{i+1}',
                         reset_less=True)
                  for i in range(3)]
        add_common = Signal(signed(self.aw+1), reset_less=True)
        add_re = Signal(signed(self.bw+1), reset_less=True)
        add_im = Signal(signed(self.bw+1), reset_less=True)
        multw = self.outw
        mult0 = Signal(signed(multw), reset_less=True)
        mult_re = Signal(signed(multw), reset_less=True)
        mult_im = Signal(signed(multw), reset_less=True)
        common = Signal(signed(multw), reset_less=True)
        common_q_re = Signal(signed(multw), reset_less=True)
        common_q_im = Signal(signed(multw), reset_less=True)
        re_prod = Signal(signed(multw), reset_less=True)
        im_prod = Signal(signed(multw), reset_less=True)

        with m.If(self.clken):
            m.d.sync += [
                re_a_q[0].eq(self.re_a),
                im_a_q[0].eq(self.im_a),
                re_b_q[0].eq(self.re_b),
                im_b_q[0].eq(self.im_b),
            ]
            m.d.sync += [q[j].eq(q[j-1])
                         for q in [re_a_q, im_a_q, re_b_q, im_b_q]
                         for j in range(1, len(q))]
            # common factor (re_a - im_a) * im_b
            m.d.sync += [
                add_common.eq(re_a_q[0] - im_a_q[0]),
                mult0.eq(add_common * im_b_q[1]),
                common.eq(mult0),
                common_q_re.eq(common),
                common_q_im.eq(common),
            ]
            m.d.sync += [
                # real product
                add_re.eq(re_b_q[2] - im_b_q[2]),
                mult_re.eq(add_re * re_a_q[3]),
                re_prod.eq(mult_re + common_q_re),
                # imaginary product
                add_im.eq(re_b_q[2] + im_b_q[2]),
                mult_im.eq(add_im * im_a_q[3]),
                im_prod.eq(mult_im + common_q_im),
            ]
        m.d.comb += [
            self.re_out.eq(re_prod),
            self.im_out.eq(im_prod),
        ]
        return m
