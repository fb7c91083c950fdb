# runner.py
from __future__ import annotations

import os
import shutil
import subprocess
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Collection, Dict, List, Optional, Set, Union

from .dag import DependencyGraph
from .errors import JobFailure, MissingOutputError
from .model import Job, JobKey
from .ui.console import get_console

OK = "ok"
UP_TO_DATE = "up-to-date"
PLANNED = "planned"
FAILED = "failed"
BLOCKED = "blocked"
CANCELLED = "cancelled"

Force = Union[str, Collection[str], None]


@dataclass
class RunResult:
    """Outcome of execute(): per-job status plus the commands in dispatch order."""
    statuses: Dict[str, str] = field(default_factory=dict)
    commands: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return all(s in (OK, UP_TO_DATE, PLANNED) for s in self.statuses.values())

    @property
    def executed(self) -> List[str]:
        return [name for name, s in self.statuses.items() if s == OK]


# ----------------------------------------------------------------------
# Staleness
# ----------------------------------------------------------------------

def _is_forced(job: Job, force: Force) -> bool:
    if not force:
        return False
    if force == "all":
        return True
    force = set(force)
    return job.rule.name in force or job.name in force or any(str(o) in force for o in job.output)


def _mtime(path: str) -> Optional[float]:
    try:
        return os.path.getmtime(path)
    except OSError:
        return None


def outdated_jobs(graph: DependencyGraph, force: Force = None) -> Dict[JobKey, str]:
    """
    Decide which jobs must run. Returns {job key: reason} for those jobs only.

    A job is up to date when all outputs exist and are newer than all
    inputs, nothing upstream runs, and it is not forced. A missing temp
    output only counts when some consumer has to run.
    """
    order = [k for level in graph.levels() for k in level]
    dependents = graph.dependents()
    reasons: Dict[JobKey, str] = {}
    temp_missing: Set[JobKey] = set()

    for key in order:
        job = graph.jobs[key]
        if _is_forced(job, force):
            reasons[key] = "forced"
            continue
        if not job.output:
            reasons[key] = "no output files"
            continue

        out_times = {str(o): _mtime(str(o)) for o in job.output}
        missing = [p for p, t in out_times.items() if t is None]
        if missing:
            temps = {str(p) for p in job.temp_outputs}
            if key not in graph.target_jobs and all(p in temps for p in missing):
                temp_missing.add(key)
            else:
                reasons[key] = f"missing output {missing[0]}"
                continue

        if any(d in reasons for d in graph.deps.get(key, ())):
            reasons[key] = "updated input"
            temp_missing.discard(key)
            continue

        if key in temp_missing:
            continue

        oldest_out = min(out_times.values())
        for inp in job.input:
            t = _mtime(str(inp))
            if t is not None and t > oldest_out:
                reasons[key] = f"input newer: {inp}"
                break

    for key in reversed(order):
        if key in temp_missing and any(d in reasons for d in dependents[key]):
            reasons[key] = "missing temp output needed downstream"

    return reasons


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def run_shell(job: Job) -> None:
    """Default job runner: executes the rendered shell command."""
    if not job.shell:
        return
    proc = subprocess.run(
        job.shell,
        shell=True,
        text=True,
        capture_output=True,
    )
    if proc.returncode != 0:
        raise JobFailure(
            job=job.name,
            cmd=job.shell,
            exit_code=proc.returncode,
            stderr=proc.stderr[-4000:],
        )


def _remove(path: str) -> None:
    p = Path(path)
    if p.is_dir() and not p.is_symlink():
        shutil.rmtree(p)
    elif p.exists() or p.is_symlink():
        p.unlink()


def _prepare_outputs(job: Job) -> None:
    for out in job.output:
        _remove(str(out))
        Path(str(out)).parent.mkdir(parents=True, exist_ok=True)


def _run_job(job: Job, run_fn: Callable[[Job], None]) -> None:
    _prepare_outputs(job)
    try:
        run_fn(job)
        missing = [str(o) for o in job.output if not os.path.exists(str(o))]
        if missing:
            raise MissingOutputError(job.name, missing)
    except Exception:
        for out in job.output:
            _remove(str(out))
        raise


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def execute(
    graph: DependencyGraph,
    *,
    dry_run: bool = False,
    force: Force = None,
    cores: int | None = None,
    keep_going: bool = False,
    print_commands: bool = False,
    notemp: bool = False,
    run_fn: Callable[[Job], None] = run_shell,
) -> RunResult:
    """
    Run every outdated job of the graph, respecting dependencies.

    A job starts only after all jobs producing its inputs succeeded. On a
    failure, jobs downstream of it are blocked; without keep_going no new
    jobs are dispatched but running ones finish.
    """
    console = get_console()
    result = RunResult()
    reasons = outdated_jobs(graph, force)
    for job in graph.jobs_in_order():
        console.print_debug(f"{job.name}: {reasons.get(job.key, UP_TO_DATE)}")

    if cores is None:
        c = os.cpu_count() or 2
        cores = max(1, c - 1)
    cores = max(1, cores)

    if dry_run:
        for job in graph.jobs_in_order():
            if job.key in reasons:
                result.statuses[job.name] = PLANNED
                console.print_plan_job(job.name, reasons[job.key])
                if job.shell:
                    result.commands.append(job.shell)
                    if print_commands:
                        console.print_command(job.shell)
            else:
                result.statuses[job.name] = UP_TO_DATE
        return result

    dependents = graph.dependents()
    pending = {k: set(ds) for k, ds in graph.deps.items()}
    ready: List[JobKey] = sorted(k for k, ds in pending.items() if not ds)
    done: Dict[JobKey, str] = {}
    in_flight: Dict = {}
    free = cores
    failed = False

    def release(key: JobKey) -> None:
        for nxt in sorted(dependents[key]):
            pending[nxt].discard(key)
            if not pending[nxt]:
                ready.append(nxt)

    def cleanup_temp(key: JobKey) -> None:
        if notemp:
            return
        for dep in graph.deps.get(key, ()):
            if all(done.get(c) in (OK, UP_TO_DATE) for c in dependents[dep]):
                for tmp in graph.jobs[dep].temp_outputs:
                    if str(tmp) not in graph.targets and os.path.exists(str(tmp)):
                        console.print_info(f"Removing temporary output {tmp}")
                        _remove(str(tmp))

    with ThreadPoolExecutor(max_workers=cores) as pool:
        while ready or in_flight:
            deferred: List[JobKey] = []
            while ready:
                key = ready.pop(0)
                job = graph.jobs[key]
                if key not in reasons:
                    done[key] = UP_TO_DATE
                    release(key)
                    cleanup_temp(key)
                    continue
                if failed and not keep_going:
                    deferred.append(key)
                    continue
                need = min(job.threads, cores)
                if need > free:
                    deferred.append(key)
                    continue
                free -= need
                console.print_job_start(job.name, reasons[key])
                if job.rule.message:
                    console.print_info(job.rule.message)
                if job.shell:
                    result.commands.append(job.shell)
                    if print_commands:
                        console.print_command(job.shell)
                in_flight[pool.submit(_run_job, job, run_fn)] = key
            ready[:0] = deferred

            if not in_flight:
                break

            # wait for one completion, then loop to schedule newly-ready jobs
            fut = next(as_completed(list(in_flight.keys())))
            key = in_flight.pop(fut)
            job = graph.jobs[key]
            free += min(job.threads, cores)

            try:
                fut.result()
            except Exception as e:
                done[key] = FAILED
                result.errors[job.name] = str(e)
                failed = True
                console.print_failure(
                    job.name,
                    getattr(e, "stderr", "") or str(e),
                    exit_code=getattr(e, "exit_code", None),
                    is_job=True,
                )
                continue

            done[key] = OK
            console.print_success(job.name)
            release(key)
            cleanup_temp(key)

    failed_keys = {k for k, s in done.items() if s == FAILED}
    for job in graph.jobs_in_order():
        key = job.key
        if key not in done:
            done[key] = BLOCKED if _upstream(graph, key) & failed_keys else CANCELLED
        result.statuses[job.name] = done[key]

    return result


def _upstream(graph: DependencyGraph, key: JobKey) -> Set[JobKey]:
    seen: Set[JobKey] = set()
    stack = list(graph.deps.get(key, ()))
    while stack:
        k = stack.pop()
        if k not in seen:
            seen.add(k)
            stack.extend(graph.deps.get(k, ()))
    return seen
