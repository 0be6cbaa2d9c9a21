# notchaudio
# Copyright (C) 2026 The notchaudio authors
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Abstract base class for system volume adapters.

Volume is one system-wide scalar in [0, 1], independent of which app owns
playback.  Adapters only need set_volume and get_volume.
"""

from abc import ABC, abstractmethod


def clamp_volume(volume: float) -> float:
    return max(0.0, min(1.0, float(volume)))


class VolumeAdapter(ABC):
    """Interface every volume output must implement."""

    @abstractmethod
    async def set_volume(self, volume: float) -> None: ...

    @abstractmethod
    async def get_volume(self) -> float: ...

    async def close(self) -> None:
        pass  # no-op by default (nothing pending)
