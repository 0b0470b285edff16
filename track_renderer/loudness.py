"""ITU-R BS.1770 integrated loudness.

Two-stage K-weighting (high shelf, then high pass), mean square over 400 ms
blocks stepped every 100 ms (75% overlap), and two-pass gating: blocks under
-70 LUFS are dropped, then blocks more than 10 LU below the mean of the survivors.
"""

import math

import numpy as np
from scipy.signal import lfilter

STEP_SECONDS = 0.1
STEPS_PER_BLOCK = 4  # 400 ms blocks
CHUNK_SECONDS = 10
ABSOLUTE_GATE_LUFS = -70.0
RELATIVE_GATE_LU = -10.0


def _high_shelf(sample_rate: int, gain_db: float = 4.0, q: float = 1 / math.sqrt(2), fc: float = 1500.0):
    a = 10 ** (gain_db / 40.0)
    w0 = 2.0 * math.pi * fc / sample_rate
    alpha = math.sin(w0) / (2.0 * q)
    cos_w0 = math.cos(w0)
    sqrt_a = math.sqrt(a)

    b0 = a * ((a + 1) + (a - 1) * cos_w0 + 2 * sqrt_a * alpha)
    b1 = -2 * a * ((a - 1) + (a + 1) * cos_w0)
    b2 = a * ((a + 1) + (a - 1) * cos_w0 - 2 * sqrt_a * alpha)
    a0 = (a + 1) - (a - 1) * cos_w0 + 2 * sqrt_a * alpha
    a1 = 2 * ((a - 1) - (a + 1) * cos_w0)
    a2 = (a + 1) - (a - 1) * cos_w0 - 2 * sqrt_a * alpha
    return np.array([b0, b1, b2]) / a0, np.array([a0, a1, a2]) / a0


def _high_pass(sample_rate: int, q: float = 0.5, fc: float = 38.0):
    w0 = 2.0 * math.pi * fc / sample_rate
    alpha = math.sin(w0) / (2.0 * q)
    cos_w0 = math.cos(w0)

    b = np.array([(1 + cos_w0) / 2, -(1 + cos_w0), (1 + cos_w0) / 2])
    a = np.array([1 + alpha, -2 * cos_w0, 1 - alpha])
    return b / a[0], a / a[0]

def _k_weighting(sample_rate: int):
    return [_high_shelf(sample_rate), _high_pass(sample_rate)]


def step_energies(samples: np.ndarray, sample_rate: int, step: int) -> np.ndarray:
    """Channel-summed K-weighted energy of every complete step of the signal.

    The filters run chunk by chunk with their state carried across, so only
    one chunk is ever held in float64. A trailing partial step is dropped.
    """
    n_steps = samples.shape[0] // step
    energies = np.empty(n_steps, dtype=np.float64)
    filters = _k_weighting(sample_rate)
    states = [np.zeros((2, samples.shape[1])) for _ in filters]
    chunk_steps = max(1, int(CHUNK_SECONDS * sample_rate) // step)

    for first in range(0, n_steps, chunk_steps):
        last = min(first + chunk_steps, n_steps)
        chunk = samples[first * step:last * step].astype(np.float64)
        for i, (b, a) in enumerate(filters):
            chunk, states[i] = lfilter(b, a, chunk, axis=0, zi=states[i])
        squares = (chunk ** 2).sum(axis=1)
        energies[first:last] = squares.reshape((-1, step)).sum(axis=1)

    return energies


def integrated_loudness(samples: np.ndarray, sample_rate: int) -> float:
    """Integrated loudness in LUFS of float samples in [-1, 1].

    samples is (frames,) or (frames, channels). Returns -inf for silence or
    anything shorter than one 400 ms block.
    """
    data = np.asarray(samples)
    if data.ndim == 1:
        data = data[:, np.newaxis]

    step = int(round(STEP_SECONDS * sample_rate))
    block = step * STEPS_PER_BLOCK
    if step == 0 or data.shape[0] < block:
        return float("-inf")

    # Each 400 ms block is four consecutive 100 ms steps
    energies = step_energies(data, sample_rate, step)
    power = np.convolve(energies, np.ones(STEPS_PER_BLOCK), mode="valid") / block

    with np.errstate(divide="ignore"):
        block_lufs = -0.691 + 10 * np.log10(power)

    gated = power[block_lufs > ABSOLUTE_GATE_LUFS]
    if gated.size == 0:
        return float("-inf")

    relative = -0.691 + 10 * math.log10(gated.mean()) + RELATIVE_GATE_LU
    gated = power[(block_lufs > ABSOLUTE_GATE_LUFS) & (block_lufs > relative)]
    if gated.size == 0:
        return float("-inf")
    return float(-0.691 + 10 * math.log10(gated.mean()))
