import asyncio
import enum
import equinox as eqx
from typing import Any, Callable, Generator, Generic, Optional, TypeVar
from probpath.util.misc import get_logger

"""
Cooperative, cancellable precomputation of animation frames.

A view calls `update(state)` whenever one of its inputs changes.  Every call
gets a new generation id, and only the most recent request is kept: a request
that has not started yet is replaced, and a running one is abandoned at its
next chunk boundary.

The work itself is a generator returned by `job_factory(state)`.  Each
`yield` marks one unit of work and the `return` value is the finished result,
which is handed to `on_commit(generation, result)`.  The controller checks for
newer requests after every `chunk_size` units, so a job never has to know
about cancellation and a stale job never commits.  Every job builds its
result in its own buffers; nothing is shared between generations.

Everything runs on one thread.  `step()` advances the current job by one
chunk, `run_until_idle()` pumps synchronously, and `run()` pumps from an
asyncio event loop, giving control back to the loop after every chunk.
"""

__all__ = ['ControllerStatus',
           'PrecomputeRequest',
           'ControllerStats',
           'PrecomputeController']

logger = get_logger(__name__)

StateT = TypeVar('StateT')
ResultT = TypeVar('ResultT')
Job = Generator[Any, None, ResultT]

class ControllerStatus(str, enum.Enum):
  IDLE = 'idle'
  COMPUTING = 'computing'

class PrecomputeRequest(eqx.Module):
  generation: int = eqx.field(static=True)
  state: Any

class ControllerStats(eqx.Module):
  """
  Attributes:
    started: Jobs that were started
    committed: Jobs whose result was handed to on_commit
    aborted: Jobs that were abandoned because a newer request arrived
    chunks: Chunks executed over all jobs
  """
  started: int = 0
  committed: int = 0
  aborted: int = 0
  chunks: int = 0

  def to_dict(self) -> dict:
    return {
      "started": self.started,
      "committed": self.committed,
      "aborted": self.aborted,
      "chunks": self.chunks
    }

################################################################################################################

class PrecomputeController(Generic[StateT, ResultT]):
  """Runs the latest requested precomputation to completion.

  **Arguments**:

  - job_factory: state -> generator job
  - on_commit: Called with (generation, result) when a job finishes and no
               newer request exists
  - chunk_size: Units of work between two checks for newer requests
  """

  def __init__(self,
               job_factory: Callable[[StateT], Job],
               on_commit: Callable[[int, ResultT], None],
               chunk_size: int = 10):
    if chunk_size < 1:
      raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    self.job_factory = job_factory
    self.on_commit = on_commit
    self.chunk_size = chunk_size

    self._latest_generation = 0
    self._committed_generation: Optional[int] = None
    self._pending: Optional[PrecomputeRequest] = None
    self._active: Optional[PrecomputeRequest] = None
    self._job: Optional[Job] = None
    self._stats = ControllerStats()

  ##############################################################################################################

  @property
  def status(self) -> ControllerStatus:
    if self._job is not None or self._pending is not None:
      return ControllerStatus.COMPUTING
    return ControllerStatus.IDLE

  @property
  def latest_generation(self) -> int:
    return self._latest_generation

  @property
  def committed_generation(self) -> Optional[int]:
    return self._committed_generation

  @property
  def active_generation(self) -> Optional[int]:
    return None if self._active is None else self._active.generation

  @property
  def stats(self) -> ControllerStats:
    return self._stats

  def _bump(self, **counts) -> None:
    current = self._stats.to_dict()
    for name, inc in counts.items():
      current[name] += inc
    self._stats = ControllerStats(**current)

  ##############################################################################################################

  def update(self, state: StateT) -> int:
    """Request a precomputation for `state`.  Replaces any pending request
    and makes the running one stale.  Returns the new generation id."""
    self._latest_generation += 1
    if self._pending is not None:
      logger.debug(f"Request {self._pending.generation} superseded by {self._latest_generation} before it started")
    self._pending = PrecomputeRequest(self._latest_generation, state)
    logger.debug(f"Request {self._latest_generation} queued")
    return self._latest_generation

  def cancel(self) -> None:
    """Drop the pending request and abandon the running job"""
    self._pending = None
    if self._job is not None:
      self._abort()

  def _abort(self) -> None:
    generation = self._active.generation
    self._job.close()
    self._job = None
    self._active = None
    self._bump(aborted=1)
    logger.debug(f"Aborted stale precomputation {generation} (latest is {self._latest_generation})")

  def _start_pending(self) -> None:
    request, self._pending = self._pending, None
    self._active = request
    self._job = self.job_factory(request.state)
    self._bump(started=1)
    logger.debug(f"Started precomputation {request.generation}")

  def _commit(self, result: ResultT) -> None:
    generation = self._active.generation
    self._job = None
    self._active = None
    self._committed_generation = generation
    self._bump(committed=1)
    logger.debug(f"Committed precomputation {generation}")
    self.on_commit(generation, result)

  def step(self) -> bool:
    """Run one chunk of work.

    **Returns**:

    - True while there is more work to do, False once the controller is idle
    """
    if self._job is not None and self._active.generation != self._latest_generation:
      self._abort()

    if self._job is None:
      if self._pending is None:
        return False
      self._start_pending()

    self._bump(chunks=1)
    try:
      for _ in range(self.chunk_size):
        next(self._job)
    except StopIteration as done:
      self._commit(done.value)
    except Exception:
      generation = self._active.generation
      self._job = None
      self._active = None
      logger.error(f"Precomputation {generation} failed", exc_info=True)
      raise

    return self.status == ControllerStatus.COMPUTING

  def run_until_idle(self) -> None:
    """Pump synchronously until there is no work left"""
    while self.step():
      pass

  async def run(self) -> None:
    """Pump from an asyncio event loop, yielding to the loop after every
    chunk so that other tasks (e.g. new `update` calls) can run."""
    while self.step():
      await asyncio.sleep(0)
