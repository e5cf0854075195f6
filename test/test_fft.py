#
# Copyright (C) 2022-2024 Daniel Estevez <daniel@destevez.net>
#
# This file is part of sfft-hdl
#
# SPDX-License-Identifier: MIT
#

import amaranth.back.rtlil
import numpy as np

import itertools
import unittest

from sfft_hdl import configs
from sfft_hdl.config import Commutation, Direction, FFTConfig, Rounding
from sfft_hdl.fft import FFT, FFTState, Radix2Pipeline
from .amaranth_sim import AmaranthSim


def make_config(fft_size, rounding=Rounding.ROUNDING,
                commutation=Commutation.CONTINUOUS,
                direction=Direction.FORWARD_ONLY,
                width_in=16, width_twiddle=18, bypass=False):
    config = FFTConfig()
    config.fft_size = fft_size
    config.rounding = rounding
    config.commutation = commutation
    config.direction = direction
    config.width_in = width_in
    config.width_twiddle = width_twiddle
    config.bypass = bypass
    return config


class TestFFTModel(unittest.TestCase):
    def setUp(self):
        self.rng = np.random.default_rng(7)

    def random_input(self, fft_size, nframes, amplitude=2**13):
        return tuple(self.rng.integers(-amplitude, amplitude,
                                       size=fft_size * nframes)
                     for _ in range(2))

    def transform(self, x, fft_size, f):
        return f(x.reshape(-1, fft_size), axis=-1).ravel()

    def test_forward_scaled(self):
        for fft_size, rounding in itertools.product(
                [4, 16, 64, 256], [Rounding.ROUNDING, Rounding.TRUNCATE]):
            with self.subTest(fft_size=fft_size, rounding=rounding):
                fft = FFT(make_config(fft_size, rounding))
                re, im = self.random_input(fft_size, 4)
                re_out, im_out = fft.model(re, im)
                expected = self.transform(
                    re + 1j * im, fft_size, np.fft.fft) / fft_size
                err = re_out + 1j * im_out - expected
                # TRUNCATE has a bias of up to one LSB per stage
                bound = fft.order_log2 * (
                    1 if rounding == Rounding.ROUNDING else 2)
                self.assertLessEqual(np.max(np.abs(err.real)), bound)
                self.assertLessEqual(np.max(np.abs(err.imag)), bound)

    def test_inverse_scaled(self):
        for fft_size in [4, 32, 128]:
            with self.subTest(fft_size=fft_size):
                fft = FFT(make_config(fft_size,
                                      direction=Direction.INVERSE_ONLY))
                re, im = self.random_input(fft_size, 4)
                re_out, im_out = fft.model(re, im, inverse=True)
                expected = self.transform(re + 1j * im, fft_size,
                                          np.fft.ifft)
                err = re_out + 1j * im_out - expected
                self.assertLessEqual(np.max(np.abs(err.real)),
                                     fft.order_log2)
                self.assertLessEqual(np.max(np.abs(err.imag)),
                                     fft.order_log2)

    def test_unscaled_exact(self):
        # with N = 4 there are no twiddle multiplications
        fft = FFT(make_config(4, Rounding.UNSCALED, direction=Direction.BOTH))
        self.assertEqual(fft.width_out, 18)
        re, im = self.random_input(4, 16, amplitude=2**15)
        re_out, im_out = fft.model(re, im)
        expected = self.transform(re + 1j * im, 4, np.fft.fft)
        np.testing.assert_equal(re_out, expected.real)
        np.testing.assert_equal(im_out, expected.imag)
        re_out, im_out = fft.model(re, im, inverse=True)
        expected = 4 * self.transform(re + 1j * im, 4, np.fft.ifft)
        np.testing.assert_allclose(re_out, expected.real, atol=1e-9)
        np.testing.assert_allclose(im_out, expected.imag, atol=1e-9)

    def test_unscaled(self):
        fft_size = 64
        fft = FFT(make_config(fft_size, Rounding.UNSCALED))
        self.assertEqual(fft.width_out, 16 + 2 + 4 * 2)
        re, im = self.random_input(fft_size, 4)
        re_out, im_out = fft.model(re, im)
        expected = self.transform(re + 1j * im, fft_size, np.fft.fft)
        err = np.abs(re_out + 1j * im_out - expected)
        self.assertLess(np.max(err), 1e-3 * np.max(np.abs(expected)))

    def test_impulse(self):
        fft = FFT(make_config(4, Rounding.UNSCALED))
        re_out, im_out = fft.model([1, 0, 0, 0], [0, 0, 0, 0])
        np.testing.assert_equal(re_out, [1, 1, 1, 1])
        np.testing.assert_equal(im_out, [0, 0, 0, 0])

    def test_round_trip(self):
        for fft_size, rounding in itertools.product(
                [4, 16, 64, 256], [Rounding.ROUNDING, Rounding.TRUNCATE]):
            with self.subTest(fft_size=fft_size, rounding=rounding):
                forward = FFT(make_config(fft_size, rounding))
                inverse = FFT(make_config(fft_size, Rounding.UNSCALED,
                                          direction=Direction.INVERSE_ONLY))
                re, im = self.random_input(fft_size, 8)
                re_out, im_out = inverse.model(*forward.model(re, im),
                                               inverse=True)
                # each forward output component is within E LSBs of
                # fft(x)/N, and the unscaled inverse adds N of them
                # rotated by unit twiddles. Its own rounding and twiddle
                # quantisation stay below N LSBs.
                e = forward.order_log2 * (
                    1 if rounding == Rounding.ROUNDING else 2)
                bound = fft_size * (np.sqrt(2) * e + 1)
                self.assertLessEqual(np.max(np.abs(re_out - re)), bound)
                self.assertLessEqual(np.max(np.abs(im_out - im)), bound)

    def test_round_trip_unscaled(self):
        for fft_size in [4, 8, 16, 64, 256]:
            with self.subTest(fft_size=fft_size):
                forward = FFT(make_config(fft_size, Rounding.UNSCALED))
                inverse = FFT(make_config(fft_size, Rounding.UNSCALED,
                                          direction=Direction.INVERSE_ONLY,
                                          width_in=forward.width_out))
                re, im = self.random_input(fft_size, 8)
                re_out, im_out = inverse.model(*forward.model(re, im),
                                               inverse=True)
                if fft_size == 4:
                    # no twiddle products, so no rounding
                    np.testing.assert_equal(re_out, fft_size * re)
                    np.testing.assert_equal(im_out, fft_size * im)
                    continue
                # only the twiddle products are rounded, half an LSB each
                bound = fft_size * forward.order_log2 / 2
                self.assertLessEqual(
                    np.max(np.abs(re_out - fft_size * re)), bound)
                self.assertLessEqual(
                    np.max(np.abs(im_out - fft_size * im)), bound)

    def test_bypass_order(self):
        fft = FFT(make_config(8, bypass=True))
        re_out, im_out = fft.model(np.arange(8), np.zeros(8))
        np.testing.assert_equal(re_out, [0, 4, 2, 6, 1, 5, 3, 7])

    def test_direction_not_available(self):
        fft = FFT(make_config(16))
        with self.assertRaises(ValueError):
            fft.model(np.zeros(16), np.zeros(16), inverse=True)
        with self.assertRaises(ValueError):
            fft.model(np.zeros(12), np.zeros(12))

    def test_pipeline_stages(self):
        pipeline = Radix2Pipeline(16, 16)
        names = [type(stage).__name__ for stage in pipeline.stages]
        self.assertEqual(names, [
            'HalfPathIngress',
            'Butterfly', 'CrossCommutator',
            'Butterfly', 'CrossCommutator',
            'Butterfly', 'CrossCommutator',
            'Butterfly',
            'BitReverse'])
        self.assertEqual([bfly.order for bfly in pipeline.butterflies],
                         [3, 2, 1, 0])
        pipeline = Radix2Pipeline(16, 16, inverse=True)
        self.assertEqual([bfly.order for bfly in pipeline.butterflies],
                         [0, 1, 2, 3])
        self.assertEqual(type(pipeline.stages[0]).__name__, 'BitReverse')
        self.assertEqual(type(pipeline.stages[-1]).__name__,
                         'HalfPathEgress')
        # 2 reorderers, 4 butterflies and 3 commutators
        self.assertEqual(pipeline.delay,
                         2 * 8 + (7 + 7 + 1 + 1) + (5 + 3 + 2))


class TestFFT(AmaranthSim):
    def setUp(self):
        self.rng = np.random.default_rng(11)

    def random_input(self, nframes, amplitude=2**13):
        return tuple(
            self.rng.integers(-amplitude, amplitude,
                              size=self.dut.fft_size * nframes)
            for _ in range(2))

    def simulate_fft(self, re_in, im_in, strobe=None, *, flush=True,
                     tail=None, inverse=None):
        """Runs the FFT with a given input strobe

        The input pairs are presented on the cycles where ``strobe`` is
        True. After the strobe, ``flush`` is held asserted (if enabled)
        during ``tail`` cycles.
        """
        dut = self.dut
        npairs = re_in.size // 2
        if strobe is None:
            strobe = np.ones(npairs, 'bool')
        if tail is None:
            tail = 2 * dut.delay + dut.fft_size
        result = {'re': [], 'im': [], 'cycles': [], 'states': []}

        async def bench(ctx):
            if inverse is not None:
                ctx.set(dut.inverse, inverse)
            j = 0
            for cycle in range(len(strobe) + tail):
                valid = bool(cycle < len(strobe) and strobe[cycle]
                             and j < npairs)
                ctx.set(dut.valid_in, valid)
                ctx.set(dut.flush, flush and cycle >= len(strobe))
                if valid:
                    ctx.set(dut.re_a_in, int(re_in[2*j]))
                    ctx.set(dut.im_a_in, int(im_in[2*j]))
                    ctx.set(dut.re_b_in, int(re_in[2*j+1]))
                    ctx.set(dut.im_b_in, int(im_in[2*j+1]))
                    j += 1
                result['states'].append(ctx.get(dut.state))
                if ctx.get(dut.valid_out):
                    result['cycles'].append(cycle)
                    result['re'] += [ctx.get(dut.re_a_out),
                                     ctx.get(dut.re_b_out)]
                    result['im'] += [ctx.get(dut.im_a_out),
                                     ctx.get(dut.im_b_out)]
                await ctx.tick()
            result['strobe_error'] = ctx.get(dut.strobe_error)

        self.simulate(bench)
        for key in ['re', 'im', 'cycles']:
            result[key] = np.array(result[key], 'int')
        return result

    def check_model(self, result, re_in, im_in, inverse=False):
        re, im = self.dut.model(re_in, im_in, inverse=inverse)
        np.testing.assert_equal(result['re'], re, 'real parts do not match')
        np.testing.assert_equal(result['im'], im,
                                'imaginary parts do not match')

    def test_model(self):
        for fft_size, rounding, direction in [
                (16, Rounding.ROUNDING, Direction.FORWARD_ONLY),
                (32, Rounding.UNSCALED, Direction.FORWARD_ONLY),
                (16, Rounding.TRUNCATE, Direction.INVERSE_ONLY),
                (32, Rounding.UNSCALED, Direction.INVERSE_ONLY)]:
            with self.subTest(fft_size=fft_size, rounding=rounding,
                              direction=direction):
                self.dut = FFT(make_config(fft_size, rounding,
                                           direction=direction))
                re_in, im_in = self.random_input(4)
                result = self.simulate_fft(re_in, im_in)
                self.check_model(
                    result, re_in, im_in,
                    inverse=direction == Direction.INVERSE_ONLY)

    def test_both_directions(self):
        for inverse in [False, True]:
            with self.subTest(inverse=inverse):
                self.dut = FFT(make_config(16, direction=Direction.BOTH))
                re_in, im_in = self.random_input(3)
                result = self.simulate_fft(re_in, im_in, inverse=inverse)
                self.check_model(result, re_in, im_in, inverse=inverse)

    def test_latency(self):
        self.dut = FFT(make_config(16))
        nframes = 8
        re_in, im_in = self.random_input(nframes)
        result = self.simulate_fft(re_in, im_in)
        # continuous input gives continuous output after a fixed delay
        npairs = re_in.size // 2
        np.testing.assert_equal(result['cycles'],
                                self.dut.delay + np.arange(npairs))
        self.assertFalse(result['strobe_error'])

    def test_states(self):
        self.dut = FFT(make_config(16))
        re_in, im_in = self.random_input(8)
        result = self.simulate_fft(re_in, im_in)
        states = [state for state, _ in itertools.groupby(result['states'])]
        self.assertEqual(states, [FFTState.IDLE, FFTState.LOADING,
                                  FFTState.STREAMING, FFTState.DRAINING,
                                  FFTState.IDLE])

    def test_bursting(self):
        self.dut = FFT(make_config(
            32, commutation=Commutation.BURSTING))
        re_in, im_in = self.random_input(5)
        npairs = re_in.size // 2
        strobe = self.rng.uniform(size=4 * npairs) < 0.5
        strobe[np.cumsum(strobe) > npairs] = False
        self.assertEqual(np.sum(strobe), npairs)
        result = self.simulate_fft(re_in, im_in, strobe)
        self.check_model(result, re_in, im_in)
        self.assertFalse(result['strobe_error'])
        self.assertEqual(result['states'][-1], FFTState.IDLE)

    def test_bursting_without_flush(self):
        self.dut = FFT(make_config(16, commutation=Commutation.BURSTING))
        re_in, im_in = self.random_input(8)
        npairs = re_in.size // 2
        result = self.simulate_fft(re_in, im_in, flush=False)
        # the pipeline only advances with valid inputs, so the pairs that
        # are still in the pipeline are not output
        self.assertEqual(result['cycles'].size, npairs - self.dut.delay)
        re, im = self.dut.model(re_in, im_in)
        np.testing.assert_equal(result['re'], re[:result['re'].size])
        np.testing.assert_equal(result['im'], im[:result['im'].size])
        self.assertEqual(result['states'][-1], FFTState.STREAMING)

    def test_continuous_bursts(self):
        # bursts of whole frames are drained automatically, both with a
        # short gap and with a gap where the pipeline becomes idle
        config = make_config(16)
        self.dut = FFT(config)
        re_in, im_in = self.random_input(6)
        frame = config.fft_size // 2
        strobe = np.concatenate([
            np.ones(2 * frame, 'bool'), np.zeros(frame, 'bool'),
            np.ones(frame, 'bool'), np.zeros(8 * frame, 'bool'),
            np.ones(3 * frame, 'bool')])
        config.check_strobe(strobe)
        result = self.simulate_fft(re_in, im_in, strobe, flush=False)
        self.check_model(result, re_in, im_in)
        self.assertFalse(result['strobe_error'])
        self.assertEqual(result['states'][-1], FFTState.IDLE)

    def test_strobe_error(self):
        config = make_config(16)
        self.dut = FFT(config)
        re_in, im_in = self.random_input(2)
        strobe = np.ones(re_in.size // 2 + 1, 'bool')
        strobe[5] = False
        with self.assertRaises(ValueError):
            config.check_strobe(strobe)
        result = self.simulate_fft(re_in, im_in, strobe)
        self.assertTrue(result['strobe_error'])

    def test_short_gap_error(self):
        config = make_config(16)
        self.dut = FFT(config)
        re_in, im_in = self.random_input(2)
        frame = config.fft_size // 2
        strobe = np.concatenate([
            np.ones(frame, 'bool'), np.zeros(3, 'bool'),
            np.ones(frame, 'bool')])
        with self.assertRaises(ValueError):
            config.check_strobe(strobe)
        result = self.simulate_fft(re_in, im_in, strobe)
        self.assertTrue(result['strobe_error'])

    def test_reset(self):
        for commutation, cut, inverse in [
                (Commutation.CONTINUOUS, 0, None),
                (Commutation.CONTINUOUS, 3, None),
                (Commutation.BURSTING, 1, None),
                (Commutation.BURSTING, 5, True),
                (Commutation.CONTINUOUS, 2, False)]:
            with self.subTest(commutation=commutation, cut=cut,
                              inverse=inverse):
                self.common_test_reset(commutation, cut, inverse)

    def common_test_reset(self, commutation, cut, inverse):
        direction = (Direction.FORWARD_ONLY if inverse is None
                     else Direction.BOTH)
        self.dut = dut = FFT(make_config(16, commutation=commutation,
                                         direction=direction))
        frame = dut.fft_size // 2
        # enough pairs before the reset to reach the streaming state,
        # ending with a partial frame
        npairs_before = frame * (dut.delay // frame + 1) + cut
        self.assertGreater(npairs_before, dut.delay)
        before = self.random_input(npairs_before // frame + 1)
        re_in, im_in = self.random_input(4)
        re_out, im_out = [], []

        def set_pair(ctx, re, im, j):
            ctx.set(dut.re_a_in, int(re[2*j]))
            ctx.set(dut.im_a_in, int(im[2*j]))
            ctx.set(dut.re_b_in, int(re[2*j+1]))
            ctx.set(dut.im_b_in, int(im[2*j+1]))

        async def bench(ctx):
            if inverse is not None:
                ctx.set(dut.inverse, inverse)
            for j in range(npairs_before):
                ctx.set(dut.valid_in, 1)
                set_pair(ctx, *before, j)
                await ctx.tick()
            assert ctx.get(dut.state) == FFTState.STREAMING
            ctx.set(dut.valid_in, 0)
            ctx.set(dut.reset, 1)
            await ctx.tick()
            ctx.set(dut.reset, 0)
            assert ctx.get(dut.state) == FFTState.IDLE
            assert not ctx.get(dut.valid_out)
            for j in range(re_in.size // 2 + 2 * dut.delay):
                valid = j < re_in.size // 2
                ctx.set(dut.valid_in, valid)
                ctx.set(dut.flush, not valid)
                if valid:
                    set_pair(ctx, re_in, im_in, j)
                if ctx.get(dut.valid_out):
                    # no output before the pipeline has been refilled
                    assert j >= dut.delay, \
                        f'output before refill @ cycle = {j}'
                    re_out.extend([ctx.get(dut.re_a_out),
                                   ctx.get(dut.re_b_out)])
                    im_out.extend([ctx.get(dut.im_a_out),
                                   ctx.get(dut.im_b_out)])
                await ctx.tick()
            assert not ctx.get(dut.strobe_error)
            assert ctx.get(dut.state) == FFTState.IDLE

        self.simulate(bench)
        re, im = dut.model(re_in, im_in, inverse=bool(inverse))
        np.testing.assert_equal(re_out, re, 'real parts do not match')
        np.testing.assert_equal(im_out, im, 'imaginary parts do not match')

    def test_bypass(self):
        self.dut = FFT(make_config(8, bypass=True))
        re_in = np.arange(16)
        im_in = -np.arange(16)
        result = self.simulate_fft(re_in, im_in)
        np.testing.assert_equal(result['re'],
                                [0, 4, 2, 6, 1, 5, 3, 7,
                                 8, 12, 10, 14, 9, 13, 11, 15])
        np.testing.assert_equal(result['im'], -result['re'])


class TestConvert(unittest.TestCase):
    def test_presets(self):
        for name in ['default', 'forward_16bit_1024', 'inverse_16bit_1024',
                     'both_unscaled_64']:
            with self.subTest(config=name):
                fft = FFT(getattr(configs, name)())
                rtlil = amaranth.back.rtlil.convert(fft, ports=fft.ports())
                self.assertIsInstance(rtlil, str)


if __name__ == '__main__':
    unittest.main()
