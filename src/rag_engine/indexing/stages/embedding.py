"""Embedding stage: fill chunk vectors through the cache, rate limiter and provider.

Retries live in the provider. A batch the provider rejects as invalid is halved until the
offending text is isolated; only that chunk is marked failed.
"""

import logging
import threading
import time

from rag_engine.embeddings.base import EmbeddingProvider, Vector, sanitize_text
from rag_engine.errors import InvalidInputError, RagEngineError
from rag_engine.governor.pool import WorkerPool
from rag_engine.indexing.context import PipelineContext, Stage, StageResult
from rag_engine.rate_limit import RateLimiter, estimate_batch_tokens
from rag_engine.vector_store.base import StoredChunk

logger = logging.getLogger(__name__)


class EmbeddingStage(Stage):
    name = "embedding"
    description = "Embed chunk texts"

    def __init__(
        self,
        provider: EmbeddingProvider,
        rate_limiter: RateLimiter | None = None,
        batch_size: int | None = None,
        max_concurrency: int = 5,
    ):
        self.provider = provider
        self.rate_limiter = rate_limiter
        self.batch_size = batch_size or min(200, provider.max_batch_size)
        self.max_concurrency = max_concurrency

    def _call_provider(self, ctx: PipelineContext, texts: list[str]) -> list[Vector]:
        if self.rate_limiter is None:
            return self.provider.embed(texts, ctx.token)
        self.rate_limiter.acquire(estimate_batch_tokens(texts), ctx.token)
        try:
            return self.provider.embed(texts, ctx.token)
        finally:
            self.rate_limiter.release()

    def _embed_texts(self, ctx: PipelineContext, texts: list[str]) -> list[Vector | None]:
        """Embed texts; a text the provider rejects on its own comes back as None."""
        try:
            return self._call_provider(ctx, texts)
        except InvalidInputError as e:
            if len(texts) == 1:
                logger.warning("indexing.embedding: provider rejected a single text: %s", e)
                return [None]
            mid = len(texts) // 2
            logger.warning("indexing.embedding: provider rejected batch of %d, splitting", len(texts))
            return self._embed_texts(ctx, texts[:mid]) + self._embed_texts(ctx, texts[mid:])

    def _embed_batch(self, ctx: PipelineContext, batch: list[StoredChunk]) -> tuple[int, int]:
        """Embed one batch in place. Returns (cache_hits, failed_chunks)."""
        valid = self._sanitize_each(ctx, batch)

        cached = ctx.cache.get_many(self.provider.id, [t for _, t in valid]) if ctx.cache else [None] * len(valid)
        misses = [(c, t) for (c, t), v in zip(valid, cached) if v is None]
        for (c, _), v in zip(valid, cached):
            if v is not None:
                c.embedding = v
        hits = len(valid) - len(misses)
        failed = len(batch) - len(valid)
        if not misses:
            return hits, failed

        try:
            vectors = self._embed_texts(ctx, [t for _, t in misses])
        except RagEngineError as e:
            for c, _ in misses:
                ctx.add_error(c.path, f"embedding failed for {c.chunk_id}: {e}")
            return hits, failed + len(misses)
        embedded_texts, embedded_vectors = [], []
        for (c, t), v in zip(misses, vectors):
            if v is None:
                ctx.add_error(c.path, f"embedding rejected for {c.chunk_id}")
                failed += 1
                continue
            c.embedding = v
            embedded_texts.append(t)
            embedded_vectors.append(v)
        if ctx.cache and embedded_texts:
            ctx.cache.set_many(self.provider.id, embedded_texts, embedded_vectors)
        ctx.backpressure()
        return hits, failed

    @staticmethod
    def _sanitize_each(ctx: PipelineContext, batch: list[StoredChunk]) -> list[tuple[StoredChunk, str]]:
        valid = []
        for c in batch:
            try:
                valid.append((c, sanitize_text(c.text)))
            except InvalidInputError as e:
                ctx.add_error(c.path, f"{c.chunk_id}: {e}")
        return valid

    def execute(self, ctx: PipelineContext) -> StageResult:
        t0 = time.monotonic()
        chunks = ctx.chunks
        batches = [chunks[i : i + self.batch_size] for i in range(0, len(chunks), self.batch_size)]
        own_pool = ctx.pool is None
        pool = ctx.pool or WorkerPool(concurrency=self.max_concurrency, max_workers=self.max_concurrency)
        done = 0
        lock = threading.Lock()

        def run(batch: list[StoredChunk]) -> tuple[int, int]:
            nonlocal done
            result = self._embed_batch(ctx, batch)
            with lock:
                done += len(batch)
                current = done
            ctx.progress(self.name, current, len(chunks))
            return result

        try:
            results = pool.map(run, batches, ctx.token)
        finally:
            if own_pool:
                pool.shutdown()

        hits = sum(h for h, _ in results)
        failed = sum(f for _, f in results)
        ctx.chunks = [c for c in chunks if c.embedding]
        ctx.log(
            logging.INFO,
            f"indexing.embedding: {len(ctx.chunks)} chunks embedded, {hits} from cache, "
            f"{failed} failed ({time.monotonic() - t0:.1f}s)",
        )
        return StageResult(
            success=failed == 0,
            data={"embedded": len(ctx.chunks), "cache_hits": hits, "failed": failed, "batches": len(batches)},
            error=f"{failed} chunks failed to embed" if failed else None,
        )
