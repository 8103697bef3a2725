"""
Concurrent per-region classification.

Architecture:
    classify_all -> one asyncio task per region -> Semaphore(N)
                 -> crop + encode (ThreadPoolExecutor(N))
                 -> classifier call (EnginePool(N), with timeout)

Each task returns its own report. Nothing is read until `asyncio.gather`
has joined every task; the reports are then merged on the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional, Sequence, Tuple, TypeVar

import numpy as np

from .buffer import CLASSIFIER_SPEC, TensorSpec, encode
from .crop import CoordinateSpace, crop_region
from .errors import InferenceFailure, InvalidInput, TwoStageError
from .types import (
    ClassificationBatch,
    ClassificationOutcome,
    DetectedRegion,
    RecognitionStatus,
    RegionFailure,
    Size,
)

logger = logging.getLogger(__name__)


ClassifierOutput = Tuple[str, Mapping[str, float]]
ClassifyFn = Callable[[np.ndarray], ClassifierOutput]
T = TypeVar("T")


@dataclass(frozen=True)
class CoordinatorConfig:
    input_size: Size = (480, 480)
    top_k: int = 5
    max_concurrency: int = 4
    # Per classifier call; None disables the timeout.
    timeout_s: Optional[float] = 10.0

    def __post_init__(self) -> None:
        if self.top_k < 1:
            raise InvalidInput("top_k must be >= 1")
        if self.max_concurrency < 1:
            raise InvalidInput("max_concurrency must be >= 1")
        if self.timeout_s is not None and self.timeout_s <= 0:
            raise InvalidInput("timeout_s must be > 0 (or None)")
        if self.input_size[0] <= 0 or self.input_size[1] <= 0:
            raise InvalidInput("input_size must be positive")


class EnginePool:
    """
    Worker threads for blocking engine calls, awaited with an optional timeout.

    A call that times out (or is cancelled) while its engine is still running
    cannot be interrupted. Its pool is retired and later calls go to a fresh
    one, so a hung engine never makes new work queue behind it. Retired pools
    release their threads when the engine finally returns.
    """

    def __init__(self, max_workers: int, thread_name_prefix: str) -> None:
        self._max_workers = max_workers
        self._prefix = thread_name_prefix
        self._executor = self._new_executor()
        self.retired = 0

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix=self._prefix)

    def _retire(self, executor: ThreadPoolExecutor) -> None:
        if executor is not self._executor:
            return
        logger.warning("%s worker is stuck; switching to a fresh pool", self._prefix)
        self._executor = self._new_executor()
        self.retired += 1
        executor.shutdown(wait=False)

    async def call(self, fn: Callable[..., T], *args: object, timeout_s: Optional[float], name: str) -> T:
        """
        Run `fn(*args)` in a worker thread.

        Timeouts and engine exceptions surface as InferenceFailure.
        """

        executor = self._executor
        cf = executor.submit(fn, *args)
        try:
            if timeout_s is None:
                return await asyncio.wrap_future(cf)
            return await asyncio.wait_for(asyncio.wrap_future(cf), timeout=timeout_s)
        except asyncio.TimeoutError as e:
            if not cf.done():
                self._retire(executor)
            raise InferenceFailure(f"{name} timed out after {timeout_s:.2f}s") from e
        except asyncio.CancelledError:
            if not cf.done():
                self._retire(executor)
            raise
        except TwoStageError:
            raise
        except Exception as e:
            raise InferenceFailure(f"{name} raised {type(e).__name__}: {e}") from e

    def close(self) -> None:
        self._executor.shutdown(wait=True)


def rank_probabilities(probabilities: Mapping[str, float], top_k: int = 5) -> List[Tuple[str, float]]:
    """
    Top-k (label, probability) pairs, strictly descending.

    Equal probabilities keep the mapping's iteration order, which is the
    classifier's class enumeration order.
    """

    items = [(str(label), float(p)) for label, p in probabilities.items()]
    if not all(np.isfinite(p) for _, p in items):
        raise ValueError("probabilities must be finite")
    ranked = sorted(items, key=lambda kv: -kv[1])
    return ranked[:top_k]


@dataclass(frozen=True)
class _UnitReport:
    index: int
    duration_ms: float
    outcome: Optional[ClassificationOutcome] = None
    failure: Optional[RegionFailure] = None


class ClassificationCoordinator:
    """
    Fans out one classification per region and joins them before aggregation.

    The classifier is a plain callable `tensor -> (label, {class: prob})`; it runs
    in a worker thread so a slow engine never blocks the event loop.
    """

    def __init__(
        self,
        classify_fn: ClassifyFn,
        *,
        tensor_spec: TensorSpec = CLASSIFIER_SPEC,
        config: CoordinatorConfig = CoordinatorConfig(),
    ) -> None:
        self._classify_fn = classify_fn
        self.tensor_spec = tensor_spec
        self.config = config
        self._engines = EnginePool(config.max_concurrency, "classify")
        # Crop + encode never queues behind a slow classifier.
        self._prepare_executor = ThreadPoolExecutor(
            max_workers=config.max_concurrency,
            thread_name_prefix="crop",
        )

    async def classify_all(
        self,
        image: np.ndarray,
        regions: Sequence[DetectedRegion],
        *,
        source_space: Optional[CoordinateSpace] = None,
    ) -> ClassificationBatch:
        """
        Classify every region of `image`.

        Regions that fail (empty crop, encode error, classifier error/timeout) are
        dropped and reported in `failures`; the others are unaffected. Cancelling
        this coroutine cancels all in-flight units.
        """

        if not regions:
            logger.info("No regions to classify")
            return ClassificationBatch(status=RecognitionStatus.NO_OBJECTS)

        # Created per call so it binds to the running loop.
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        tasks = [
            asyncio.ensure_future(self._run_unit(semaphore, image, region, source_space))
            for region in regions
        ]
        # Cancelling gather cancels every unit still running.
        results = await asyncio.gather(*tasks, return_exceptions=True)

        batch = ClassificationBatch()
        for region, res in zip(regions, results):
            if isinstance(res, BaseException):
                # Unit raised past its own handler (e.g. cancelled individually).
                failure = RegionFailure(region.index, getattr(res, "kind", type(res).__name__), str(res))
                logger.warning("Region %s failed: %s", region.key, failure.message or failure.kind)
                batch.failures.append(failure)
                continue
            batch.durations_ms[res.index] = res.duration_ms
            if res.failure is not None:
                batch.failures.append(res.failure)
            elif res.outcome is not None:
                batch.outcomes[res.index] = res.outcome

        logger.info(
            "Classified %d/%d regions (%d failed)",
            len(batch.outcomes),
            len(regions),
            len(batch.failures),
        )
        return batch

    async def _run_unit(
        self,
        semaphore: asyncio.Semaphore,
        image: np.ndarray,
        region: DetectedRegion,
        source_space: Optional[CoordinateSpace],
    ) -> _UnitReport:
        async with semaphore:
            loop = asyncio.get_running_loop()
            t0 = time.perf_counter()
            try:
                tensor = await loop.run_in_executor(
                    self._prepare_executor, self._prepare, image, region, source_space
                )
                output = await self._call_classifier(tensor)
                outcome = self._to_outcome(region.index, output)
            except TwoStageError as e:
                duration_ms = (time.perf_counter() - t0) * 1000.0
                logger.warning("Region %s dropped (%s): %s", region.key, e.kind, e)
                return _UnitReport(region.index, duration_ms, failure=RegionFailure(region.index, e.kind, str(e)))
            duration_ms = (time.perf_counter() - t0) * 1000.0
            logger.debug("Region %s -> %s in %.2f ms", region.key, outcome.top_label, duration_ms)
            return _UnitReport(region.index, duration_ms, outcome=outcome)

    def _prepare(
        self,
        image: np.ndarray,
        region: DetectedRegion,
        source_space: Optional[CoordinateSpace],
    ) -> np.ndarray:
        crop = crop_region(image, region.box, source_space, output_size=self.config.input_size)
        return encode(crop, self.config.input_size, self.tensor_spec)

    async def _call_classifier(self, tensor: np.ndarray) -> ClassifierOutput:
        return await self._engines.call(
            self._classify_fn,
            tensor,
            timeout_s=self.config.timeout_s,
            name="classifier",
        )

    def _to_outcome(self, index: int, output: ClassifierOutput) -> ClassificationOutcome:
        try:
            label, probs = output
            ranked = rank_probabilities(probs, self.config.top_k)
        except (TypeError, ValueError, AttributeError) as e:
            raise InferenceFailure(f"malformed classifier output: {output!r}") from e
        return ClassificationOutcome(region_index=index, top_label=str(label), probabilities=tuple(ranked))

    def close(self) -> None:
        """Shut down both worker pools."""
        self._prepare_executor.shutdown(wait=True)
        self._engines.close()

    def __enter__(self) -> "ClassificationCoordinator":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def classify_all_sync(
    coordinator: ClassificationCoordinator,
    image: np.ndarray,
    regions: Sequence[DetectedRegion],
    *,
    source_space: Optional[CoordinateSpace] = None,
) -> ClassificationBatch:
    """Blocking wrapper for callers without an event loop."""
    return asyncio.run(coordinator.classify_all(image, regions, source_space=source_space))

