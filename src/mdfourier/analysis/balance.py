"""
Stereo balance check.

A mono tone block plays the same content on both channels, so any magnitude
difference between the left and right fundamental is capture-chain
imbalance. The ratio is measured with a flat-top window (minimal scalloping
loss) and can be applied back onto the louder channel before analysis.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

from .frequency import FrequencyExtractor
from .windows import WindowManager
from ..interfaces.data_models import Channel, Frequency, Signal, WindowShape

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceResult:
    """
    Measured channel balance.

    Attributes:
        ratio: Quieter / louder fundamental magnitude (1.0 when balanced)
        balance_db: 20 * log10(ratio), 0 or negative
        louder: Channel with the larger magnitude, None when balanced
        hertz: Fundamental used for the measurement
    """
    ratio: float
    balance_db: float
    louder: Optional[Channel]
    hertz: float

    @property
    def difference_percent(self) -> float:
        return (1.0 - self.ratio) * 100.0


def _match_fundamentals(left, right) -> Optional[Tuple[Frequency, Frequency]]:
    """Same-frequency peaks among the two loudest of each channel."""
    for i, j in ((0, 0), (1, 0), (0, 1)):
        if i < len(left) and j < len(right) and left[i].hertz == right[j].hertz:
            return left[i], right[j]
    return None


def check_balance(
    signal: Signal,
    block_index: int,
    extractor: FrequencyExtractor,
    windows: WindowManager,
    framerate: float,
) -> Optional[BalanceResult]:
    """
    Measure left/right balance on a mono block.

    Returns:
        BalanceResult, or None when the block cannot be measured (mono
        recording, silent block, fundamentals do not agree)
    """
    if signal.channels != 2:
        return None
    block = signal.blocks[block_index]
    if block.samples is None:
        logger.warning(f"{signal.source_name}: balance block {block_index} has no samples")
        return None

    window = windows.get_window(block.frames, block.cut_frames, framerate,
                                signal.effective_sample_rate, shape=WindowShape.FLATTOP)
    sample_rate = signal.effective_sample_rate
    left = extractor.extract(block.samples[:, 0], sample_rate, window)
    right = extractor.extract(block.samples[:, 1], sample_rate, window)

    pair = _match_fundamentals(left, right)
    if pair is None:
        logger.warning(f"{signal.source_name}: left and right fundamentals differ in "
                       f"block {block_index} ({block.name}), balance not measured")
        return None

    l, r = pair
    louder_magnitude = max(l.magnitude, r.magnitude)
    if louder_magnitude == 0.0:
        return None

    if l.magnitude == r.magnitude:
        return BalanceResult(ratio=1.0, balance_db=0.0, louder=None, hertz=l.hertz)

    ratio = min(l.magnitude, r.magnitude) / louder_magnitude
    louder = Channel.LEFT if l.magnitude > r.magnitude else Channel.RIGHT
    result = BalanceResult(ratio=ratio, balance_db=20.0 * math.log10(ratio),
                           louder=louder, hertz=l.hertz)
    logger.info(f"{signal.source_name}: {louder.name} channel louder by "
                f"{-result.balance_db:.3f}dB ({result.difference_percent:.2f}%) at {l.hertz}Hz")
    return result


def apply_balance(signal: Signal, result: BalanceResult) -> None:
    """Scale the louder channel between the sync offsets to match the other."""
    signal.balance_db = result.balance_db
    if result.louder is None:
        return
    column = 0 if result.louder is Channel.LEFT else 1
    signal.samples[signal.start_offset:signal.end_offset, column] *= result.ratio
    logger.debug(f"{signal.source_name}: {result.louder.name} scaled by {result.ratio:.6f}")
