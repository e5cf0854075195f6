#
# Copyright (C) 2024 Daniel Estevez <daniel@destevez.net>
#
# This file is part of sfft-hdl
#
# SPDX-License-Identifier: MIT
#

from amaranth import *
from amaranth.lib.memory import Memory


class Bank(Elaboratable):
    """Memory bank with read-first semantics

    A single-writer single-reader memory bank. Each clock-enabled cycle, the
    word at ``addr`` is presented at ``r_data`` and replaced by ``w_data``.
    The read returns the value before the write, so when ``addr`` is a
    counter modulo ``depth`` the bank is a delay line of ``depth`` samples.

    A bank of depth 1 is implemented as a register.

    Parameters
    ----------
    width : int
        Width of the memory words.
    depth : int
        Number of memory words.

    Attributes
    ----------
    clken : Signal(), in
        Clock enable.
    addr : Signal(range(depth)), in
        Read and write address. Only present if ``depth > 1``.
    w_data : Signal(width), in
        Write data.
    r_data : Signal(width), out
        Read data.
    """
    def __init__(self, width, depth):
        self.w = width
        self.depth = depth

        self.clken = Signal()
        if self.depth > 1:
            self.addr = Signal(range(depth))
        self.w_data = Signal(width)
        self.r_data = Signal(width)

    def elaborate(self, platform):
        m = Module()
        if self.depth == 1:
            reg = Signal(self.w, reset_less=True)
            with m.If(self.clken):
                m.d.sync += reg.eq(self.w_data)
            m.d.comb += self.r_data.eq(reg)
            return m

        m.submodules.mem = mem = Memory(
            shape=self.w, depth=self.depth, init=[])
        rdport = mem.read_port(domain='comb')
        wrport = mem.write_port()
        m.d.comb += [
            rdport.addr.eq(self.addr),
            self.r_data.eq(rdport.data),
            wrport.addr.eq(self.addr),
            wrport.data.eq(self.w_data),
            wrport.en.eq(self.clken),
        ]
        return m
