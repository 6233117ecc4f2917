# wavio.py
#
# WAV import and export, for sending and receiving through recordings.

import numpy as np
import soundfile as sf


def write_wav(path, samples, sample_rate):
    sf.write(str(path), np.asarray(samples, dtype=np.float32), int(sample_rate), subtype='FLOAT')


def read_wav(path):
    """Returns (mono float32 samples, sample rate). Channels are averaged."""
    data, sample_rate = sf.read(str(path), dtype='float32', always_2d=True)
    return data.mean(axis=1).astype(np.float32), sample_rate
