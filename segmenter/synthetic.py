"""
Synthetic Audio Generators

Generated tracks with known section boundaries, used by the demo mode and
the test suite. No external audio files required.
"""

from typing import List, Sequence, Tuple

import numpy as np


def tone(freqs: Sequence[float], duration: float, sr: int,
         amplitude: float = 0.5, noise: float = 0.0, seed: int = 0) -> np.ndarray:
    """
    Sum of equal-weight sines, optionally with a little white noise.

    Parameters:
        freqs: Partial frequencies in Hz
        duration: Duration in seconds
        sr: Sample rate
        amplitude: Peak amplitude of the sum
        noise: Noise amplitude relative to `amplitude`
        seed: Noise seed (deterministic)

    Returns:
        float32 array
    """
    t = np.arange(int(round(duration * sr))) / sr
    audio = np.zeros_like(t)
    for f in freqs:
        audio += np.sin(2 * np.pi * f * t)
    audio *= amplitude / max(1, len(freqs))
    if noise > 0:
        rng = np.random.default_rng(seed)
        audio += noise * amplitude * rng.standard_normal(len(t))
    return audio.astype(np.float32)


def generate_section_sequence(sections: Sequence[Tuple[Sequence[float], float]],
                              sr: int = 22050, noise: float = 0.05) -> Tuple[np.ndarray, List[float]]:
    """
    Concatenate tonal sections.

    Parameters:
        sections: (partials in Hz, duration in seconds) per section
        sr: Sample rate
        noise: Relative noise level

    Returns:
        Tuple of (audio, boundary_times) with the interior section boundaries
    """
    parts = []
    boundaries = []
    elapsed = 0.0
    for k, (freqs, duration) in enumerate(sections):
        parts.append(tone(freqs, duration, sr, noise=noise, seed=k))
        elapsed += duration
        boundaries.append(elapsed)
    audio = np.concatenate(parts)
    return audio / np.max(np.abs(audio)), boundaries[:-1]


def generate_section_contrast(duration: float = 40, sr: int = 22050) -> Tuple[np.ndarray, float]:
    """
    Quiet low section followed by a bright harmonic section.

    Returns:
        Tuple of (audio, transition_time_expected)
    """
    half = duration / 2.0
    audio, boundaries = generate_section_sequence(
        [([220.0], half), ([440.0, 880.0, 1760.0], half)], sr=sr
    )
    return audio, boundaries[0]


def generate_aba_form(section_sec: float = 20, sr: int = 22050) -> Tuple[np.ndarray, List[float]]:
    """
    Three sections where the first and last share their timbre.

    Returns:
        Tuple of (audio, boundary_times)
    """
    a = [220.0, 330.0, 440.0]
    b = [1200.0, 2500.0, 3700.0]
    return generate_section_sequence([(a, section_sec), (b, section_sec), (a, section_sec)], sr=sr)


def generate_repetitive_loop(duration: float = 60, sr: int = 22050) -> np.ndarray:
    """
    Constant repeating two-second chord loop.

    Returns:
        Audio array
    """
    loop = tone([440.0, 554.0, 659.0], 2.0, sr)
    n_loops = int(np.ceil(duration / 2.0))
    audio = np.tile(loop, n_loops)[:int(duration * sr)]
    return audio / np.max(np.abs(audio))


def generate_nested_form(sr: int = 22050, phrase_sec: float = 6.0,
                         phrases_per_section: int = 4) -> Tuple[np.ndarray, List[float], List[float]]:
    """
    Two macro sections, each made of alternating phrases.

    Returns:
        Tuple of (audio, macro_boundaries, phrase_boundaries)
    """
    palettes = [
        ([200.0, 300.0], [250.0, 375.0]),
        ([1500.0, 2250.0], [1800.0, 2700.0]),
    ]
    sections = []
    for first, second in palettes:
        for p in range(phrases_per_section):
            sections.append((first if p % 2 == 0 else second, phrase_sec))
    audio, phrase_boundaries = generate_section_sequence(sections, sr=sr)
    macro = [phrase_sec * phrases_per_section]
    return audio, macro, phrase_boundaries
