"""Token caching, top-k/nucleus sampling, streamed and batched generation."""

from __future__ import annotations

import threading
from collections import OrderedDict, deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import numpy as np

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK64 = (1 << 64) - 1

VOCAB_SIZE = 32000
HIDDEN_DIM = 2048
ATTENTION_DIM = 1024
EOS_ID = 0
_BATCH_LOGITS = (1.0, 2.0, 3.0)

TokenCallback = Callable[[int], object]


def _hash_window(tokens: Sequence[int], start: int, length: int) -> int:
    value = _FNV_OFFSET
    for token in tokens[start:start + length]:
        value ^= int(token) & _MASK64
        value = (value * _FNV_PRIME) & _MASK64
    return value


class TokenCache:
    """LRU cache of hidden and attention states keyed by token windows."""

    def __init__(self, max_size: int = 1024, hidden_dim: int = HIDDEN_DIM) -> None:
        self.max_size = max_size
        self.hidden_dim = hidden_dim
        self._entries: OrderedDict[int, tuple[np.ndarray, np.ndarray]] = OrderedDict()
        self._access_counts: dict[int, int] = {}
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    @staticmethod
    def _valid(tokens: Sequence[int], pos: int, window: int) -> bool:
        return window > 0 and pos + window <= len(tokens)

    def lookup(
        self, tokens: Sequence[int], pos: int, window: int
    ) -> Optional[tuple[np.ndarray, np.ndarray]]:
        """Return copies of the cached (hidden, attention) states, or None on a miss."""
        if not self._valid(tokens, pos, window):
            return None
        key = _hash_window(tokens, pos, window)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._access_counts[key] = self._access_counts.get(key, 0) + 1
            self._hits += 1
            hidden, attention = entry
            return hidden.copy(), attention.copy()

    def store(
        self,
        tokens: Sequence[int],
        pos: int,
        window: int,
        hidden_states,
        attention_weights,
    ) -> None:
        """Cache states for the window, evicting the least recently used entry when full."""
        if not self._valid(tokens, pos, window):
            return
        key = _hash_window(tokens, pos, window)
        hidden = np.array(hidden_states, dtype=np.float32)
        attention = np.array(attention_weights, dtype=np.float32)
        with self._lock:
            if self._entries and len(self._entries) >= self.max_size:
                oldest, _ = self._entries.popitem(last=False)
                self._access_counts.pop(oldest, None)
            self._entries[key] = (hidden, attention)
            self._entries.move_to_end(key)
            self._access_counts[key] = 1

    def clear(self) -> None:
        """Drop every entry and reset the hit statistics."""
        with self._lock:
            self._entries.clear()
            self._access_counts.clear()
            self._hits = 0
            self._misses = 0

    def hit_rate(self) -> float:
        """Fraction of counted lookups that hit; 0.0 before any lookup."""
        total = self._hits + self._misses
        return self._hits / total if total else 0.0

    def __len__(self) -> int:
        return len(self._entries)


class AdvancedSampler:
    """Top-k sampling with temperature and nucleus (top-p) filtering."""

    def __init__(self, seed: Optional[int] = None) -> None:
        self.rng = np.random.default_rng(seed)

    @staticmethod
    def _check_temperature(temperature: float) -> None:
        if temperature <= 0:
            raise ValueError("temperature must be positive")

    def _draw(self, ids: np.ndarray, scores: np.ndarray, top_p: float,
              renormalize: bool) -> int:
        probs = np.exp(scores - scores[0])
        probs /= probs.sum()
        if top_p < 1.0:
            reached = np.cumsum(probs) >= top_p
            size = int(np.argmax(reached)) + 1 if reached.any() else len(probs)
            probs = probs[:size]
            ids = ids[:size]
            if renormalize:
                probs = probs / probs.sum()
        draw = self.rng.random()
        chosen = np.nonzero(draw <= np.cumsum(probs))[0]
        index = int(chosen[0]) if chosen.size else len(ids) - 1
        return int(ids[index])

    def sample_top_k(self, logits, k: int = 50, temperature: float = 1.0,
                     top_p: float = 0.9) -> int:
        """Sample a token id from the k best logits; renormalizes after the nucleus cut."""
        self._check_temperature(temperature)
        scores = np.asarray(logits, dtype=np.float64).ravel() / temperature
        effective_k = min(k, scores.size)
        if effective_k <= 0:
            return 0
        ids = np.argsort(-scores, kind="stable")[:effective_k]
        return self._draw(ids, scores[ids], top_p, renormalize=True)

    def sample_top_k_fast(self, logits, k: int = 50, temperature: float = 1.0,
                          top_p: float = 0.9) -> int:
        """Top-k selection by partitioning, for large vocabularies.

        The nucleus is not renormalized: mass cut away falls on the last
        token kept.
        """
        self._check_temperature(temperature)
        scores = np.asarray(logits, dtype=np.float64).ravel() * (1.0 / temperature)
        effective_k = min(k, scores.size)
        if effective_k <= 0:
            return 0
        if effective_k < scores.size:
            candidates = np.argpartition(-scores, effective_k - 1)[:effective_k]
        else:
            candidates = np.arange(scores.size)
        ids = candidates[np.argsort(-scores[candidates], kind="stable")]
        return self._draw(ids, scores[ids], top_p, renormalize=False)


@dataclass
class StreamConfig:
    """Settings for streamed generation."""

    batch_size: int = 1
    max_length: int = 512
    temperature: float = 1.0
    top_k: int = 50
    top_p: float = 0.9
    cache_window: int = 32
    use_token_cache: bool = True
    prefill_chunk_size: int = 64

    def __post_init__(self) -> None:
        if self.prefill_chunk_size <= 0:
            raise ValueError("prefill_chunk_size must be positive")


@dataclass
class _StreamState:
    tokens: list[int]
    hidden_states: np.ndarray = field(default_factory=lambda: np.zeros(0, np.float32))
    attention_cache: np.ndarray = field(default_factory=lambda: np.zeros(0, np.float32))
    position: int = 0
    is_prefilling: bool = True


class StreamedInference:
    """Token-by-token generation with chunked prefill and window caching."""

    def __init__(self, config: Optional[StreamConfig] = None,
                 seed: Optional[int] = None) -> None:
        self.config = config if config is not None else StreamConfig()
        self.token_cache = TokenCache(1024, HIDDEN_DIM)
        self.sampler = AdvancedSampler(seed)
        self._stop = threading.Event()

    def _process_chunk(self, state: _StreamState, start: int, end: int) -> None:
        size = end - start
        rng = self.sampler.rng
        state.hidden_states = rng.uniform(-0.1, 0.1, size * HIDDEN_DIM).astype(np.float32)
        state.attention_cache = rng.uniform(-0.1, 0.1, size * ATTENTION_DIM).astype(np.float32)

    def _forward_pass(self, state: _StreamState) -> np.ndarray:
        return self.sampler.rng.uniform(-5.0, 5.0, VOCAB_SIZE).astype(np.float32)

    def _prefill(self, state: _StreamState, prompt_len: int) -> None:
        cfg = self.config
        while state.is_prefilling and state.position < prompt_len:
            chunk_end = min(state.position + cfg.prefill_chunk_size, prompt_len)
            cacheable = cfg.use_token_cache and chunk_end - state.position >= cfg.cache_window
            cached = None
            if cacheable:
                cached = self.token_cache.lookup(state.tokens, state.position, cfg.cache_window)
            if cached is not None:
                state.hidden_states, state.attention_cache = cached
                state.position += cfg.cache_window
            else:
                self._process_chunk(state, state.position, chunk_end)
                if cacheable:
                    self.token_cache.store(state.tokens, state.position, cfg.cache_window,
                                           state.hidden_states, state.attention_cache)
                state.position = chunk_end
            if chunk_end >= prompt_len:
                state.is_prefilling = False

    def generate_stream(self, prompt: Sequence[int],
                        token_callback: Optional[TokenCallback] = None) -> list[int]:
        """Generate after ``prompt`` until max_length, EOS (0) or stop(); return all tokens."""
        cfg = self.config
        state = _StreamState(tokens=[int(t) for t in prompt])
        self._stop.clear()
        self._prefill(state, len(state.tokens))

        while len(state.tokens) < cfg.max_length and not self._stop.is_set():
            logits = self._forward_pass(state)
            next_token = self.sampler.sample_top_k_fast(
                logits, cfg.top_k, cfg.temperature, cfg.top_p)
            state.tokens.append(next_token)
            state.position += 1
            if token_callback is not None:
                token_callback(next_token)
            if next_token == EOS_ID:
                break
        return state.tokens

    def generate_async(self, prompt: Sequence[int],
                       token_callback: Optional[TokenCallback] = None) -> Future:
        """Run generate_stream on a new thread; the future holds the token list."""
        future: Future = Future()
        prompt_copy = list(prompt)

        def run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self.generate_stream(prompt_copy, token_callback))
            except BaseException as exc:  # handed to the caller through the future
                future.set_exception(exc)

        threading.Thread(target=run, daemon=True).start()
        return future

    def stop(self) -> None:
        """Ask a running generation to finish after its current token."""
        self._stop.set()

    def cache_hit_rate(self) -> float:
        """Hit rate of the prefill token cache."""
        return self.token_cache.hit_rate()


@dataclass
class BatchConfig:
    """Settings for batched generation."""

    max_batch_size: int = 8
    max_sequence_length: int = 512
    dynamic_batching: bool = True
    timeout_ms: float = 10.0
    use_padding: bool = True


@dataclass
class _BatchRequest:
    tokens: list[int]
    max_new_tokens: int
    future: Future


class BatchInference:
    """Background worker that groups queued requests into batches."""

    def __init__(self, config: Optional[BatchConfig] = None,
                 seed: Optional[int] = None) -> None:
        self.config = config if config is not None else BatchConfig()
        self.sampler = AdvancedSampler(seed)
        self._pending: deque[_BatchRequest] = deque()
        self._cond = threading.Condition()
        self._running = False
        self._worker: Optional[threading.Thread] = None

    def __enter__(self) -> "BatchInference":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def start(self) -> None:
        """Start the worker thread."""
        with self._cond:
            if self._running:
                return
            self._running = True
        self._worker = threading.Thread(target=self._process_batches, daemon=True)
        self._worker.start()

    def stop(self) -> None:
        """Stop the worker and cancel requests that were never processed."""
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._worker is not None:
            self._worker.join()
            self._worker = None
        with self._cond:
            while self._pending:
                self._pending.popleft().future.cancel()

    def submit_request(self, tokens: Sequence[int], max_new_tokens: int = 100) -> Future:
        """Queue a prompt; the future resolves to the prompt plus generated tokens."""
        request = _BatchRequest([int(t) for t in tokens], max_new_tokens, Future())
        with self._cond:
            self._pending.append(request)
            self._cond.notify()
        return request.future

    def _process_batches(self) -> None:
        timeout = self.config.timeout_ms / 1000.0
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._pending or not self._running, timeout)
                if not self._running:
                    return
                batch = []
                while self._pending and len(batch) < self.config.max_batch_size:
                    batch.append(self._pending.popleft())
            if batch:
                self._process_batch(batch)

    def _process_batch(self, batch: list[_BatchRequest]) -> None:
        for request in batch:
            if not request.future.set_running_or_notify_cancel():
                continue
            try:
                generated = list(request.tokens)
                for _ in range(request.max_new_tokens):
                    next_token = self.sampler.sample_top_k(_BATCH_LOGITS, 3)
                    generated.append(next_token)
                    if next_token == EOS_ID:
                        break
                request.future.set_result(generated)
            except Exception as exc:
                request.future.set_exception(exc)