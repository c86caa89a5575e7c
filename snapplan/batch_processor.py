"""
Sequential batch processing of several images.

Each image is fully extracted and normalized before the next one is sent.
An image that can't be read, or whose extraction falls back, contributes no
events; its reason is recorded and the batch carries on.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union

from PIL import Image

from snapplan.errors import SnapPlanError
from snapplan.event_models import ParsedEvent, ParseResult
from snapplan.event_normalizer import parse_input
from snapplan.llm_client import ExtractionClient
from snapplan.logging_helper import Log
from snapplan.settings_manager import NormalizerConfig

BatchInput = Union[str, Path, Image.Image]


@dataclass
class BatchItemResult:
    source: str
    events: List[ParsedEvent] = field(default_factory=list)
    reason: Optional[str] = None
    extracted_text: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.reason is None


@dataclass
class BatchResult:
    items: List[BatchItemResult] = field(default_factory=list)

    @property
    def events(self) -> List[ParsedEvent]:
        """All events, in input order."""
        return [event for item in self.items for event in item.events]

    @property
    def failures(self) -> List[BatchItemResult]:
        return [item for item in self.items if not item.succeeded]


def _describe(source: BatchInput, index: int) -> str:
    if isinstance(source, Image.Image):
        return f"image #{index + 1}"
    return str(source)


def _load_image(source: BatchInput) -> Image.Image:
    if isinstance(source, Image.Image):
        return source
    with Image.open(Path(source).expanduser()) as image:
        image.load()
        return image.copy()


def _process_one(source: BatchInput, index: int, client: Optional[ExtractionClient],
                 config: NormalizerConfig) -> BatchItemResult:
    label = _describe(source, index)
    try:
        image = _load_image(source)
        result: ParseResult = parse_input(image=image, client=client, config=config)
    except (OSError, ValueError, SnapPlanError) as err:
        reason = err.reason if isinstance(err, SnapPlanError) else str(err)
        Log.warn(f"Batch item {label} failed: {reason}")
        return BatchItemResult(source=label, reason=reason)

    if result.used_fallback:
        Log.warn(f"Batch item {label} fell back: {result.reason}")
        return BatchItemResult(source=label, reason=result.reason or "Extraction failed",
                               extracted_text=result.extracted_text)
    return BatchItemResult(source=label, events=list(result.events), extracted_text=result.extracted_text)


def process_batch(inputs: Iterable[BatchInput], client: Optional[ExtractionClient] = None,
                  config: Optional[NormalizerConfig] = None) -> BatchResult:
    """
    Extract events from each image in turn.

    Args:
        inputs: image paths or PIL Images
        client: extraction client shared by all items (chosen from the environment if None)
        config: normalizer config shared by all items

    Returns:
        BatchResult with one BatchItemResult per input
    """
    Log.section("Batch Processor")
    config = config or NormalizerConfig()
    batch = BatchResult()
    for index, source in enumerate(inputs):
        Log.info(f"Processing batch item {index + 1}: {_describe(source, index)}")
        batch.items.append(_process_one(source, index, client, config))

    Log.kv({
        "stage": "batch",
        "items": len(batch.items),
        "events": len(batch.events),
        "failures": len(batch.failures),
    })
    return batch
