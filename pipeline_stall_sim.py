"""
No-Forwarding Pipeline Stall Simulator
============================================================
A pure-Python model of a 5-stage (IF, ID, EX, MEM, WB) pipeline running
add / sub / mov with NO data forwarding.  RAW hazards are resolved only
by holding the consumer in Decode:

  producer is the instruction just ahead (in EX)     ->  2 stall cycles
  producer is two instructions ahead (in MEM)        ->  1 stall cycle
  anything older                                     ->  already written back

Two schedulers share the same hazard unit and must always agree:

  compute_timeline()  : closed-form stage-entry cycles per instruction
  CycleSimulator      : steps the five pipeline slots one cycle at a time

Run:
    python3 pipeline_stall_sim.py                        # built-in demo program
    python3 pipeline_stall_sim.py --file program.txt     # tolerant text loader
    python3 pipeline_stall_sim.py -f program.txt -m cycles -v
"""

from __future__ import annotations
import argparse
import csv
import re
import sys
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

# ─────────────────────────────────────────────────────────────────────────────
# Pipeline geometry
# ─────────────────────────────────────────────────────────────────────────────

IF, ID, EX, MEM, WB = range(5)
STAGES: Tuple[str, ...] = ("IF", "ID", "EX", "MEM", "WB")
NUM_STAGES = len(STAGES)

# Cycles the first instruction needs beyond its own to drain the pipeline
FILL_DRAIN_CYCLES = NUM_STAGES - 1

# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ProgramError(ValueError):
    """A program that cannot be scheduled."""


class EmptyProgramError(ProgramError):
    """Zero instructions were supplied."""

    def __init__(self, message: str = "No instructions parsed."):
        super().__init__(message)


class ArityMismatchError(ProgramError):
    """Source-register count does not match the operation."""

    def __init__(self, message: str, lineno: Optional[int] = None,
                 line: Optional[str] = None):
        self.lineno = lineno
        self.line = line
        if lineno is not None:
            message = f"Parse error on line {lineno}: {message}"
            if line is not None:
                message += f'  |  line: "{line}"'
        super().__init__(message)


class SimulationError(RuntimeError):
    """The cycle simulator failed to drain within its cycle limit."""

# ─────────────────────────────────────────────────────────────────────────────
# Instruction model
# ─────────────────────────────────────────────────────────────────────────────

class Op:
    """Supported operations and their source-register arity."""

    ADD = "add"
    SUB = "sub"
    MOV = "mov"

    ARITY: Dict[str, int] = {ADD: 2, SUB: 2, MOV: 1}


def reg_name(reg: int) -> str:
    return f"x{reg}"


class Instruction:
    """One decoded instruction.  Immutable once constructed."""

    __slots__ = ("op", "dest", "sources", "text")

    def __init__(self, op: str, dest: int, sources: Sequence[int]):
        op = op.lower()
        if op not in Op.ARITY:
            raise ProgramError(f"unknown operation {op!r}")
        sources = tuple(int(r) for r in sources)
        need = Op.ARITY[op]
        if len(sources) != need:
            raise ArityMismatchError(
                f"need {need + 1} regs for {op}; got {len(sources) + 1}")
        dest = int(dest)
        if dest < 0 or any(r < 0 for r in sources):
            raise ProgramError("register numbers must be non-negative")

        text = f"{op} {reg_name(dest)}, " + ", ".join(reg_name(r) for r in sources)
        object.__setattr__(self, "op", op)
        object.__setattr__(self, "dest", dest)
        object.__setattr__(self, "sources", sources)
        object.__setattr__(self, "text", text)

    def __setattr__(self, name, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    def reads(self, reg: int) -> bool:
        """True if *reg* is one of this instruction's source registers."""
        return reg in self.sources

    def __eq__(self, other):
        if not isinstance(other, Instruction):
            return NotImplemented
        return (self.op, self.dest, self.sources) == \
               (other.op, other.dest, other.sources)

    def __hash__(self):
        return hash((self.op, self.dest, self.sources))

    def __str__(self):
        return self.text

    def __repr__(self):
        return f"Instruction({self.text!r})"


class Program:
    """Fixed, non-empty instruction sequence in program (= fetch) order."""

    __slots__ = ("_instructions",)

    def __init__(self, instructions: Iterable[Instruction]):
        self._instructions: Tuple[Instruction, ...] = tuple(instructions)
        if not self._instructions:
            raise EmptyProgramError()

    def __len__(self) -> int:
        return len(self._instructions)

    def __getitem__(self, index: int) -> Instruction:
        return self._instructions[index]

    def __iter__(self) -> Iterator[Instruction]:
        return iter(self._instructions)

    def __repr__(self):
        return f"Program({len(self)} instructions)"

# ─────────────────────────────────────────────────────────────────────────────
# Hazard Unit
# ─────────────────────────────────────────────────────────────────────────────

class HazardUnit:
    """
    RAW stall decision shared by both schedulers.

    producer1 is the nearer producer (previous instruction / EX occupant),
    producer2 the one beyond it (two back / MEM occupant).  Either may be
    None for an empty slot or bubble.
    """

    STALL_EX_PRODUCER = 2
    STALL_MEM_PRODUCER = 1

    @staticmethod
    def stalls_required(consumer: Instruction,
                        producer1: Optional[Instruction],
                        producer2: Optional[Instruction]) -> int:
        """
        Priority: EX producer > MEM producer > none.  Stalls never add up;
        a consumer depending on both producers still waits 2 cycles.
        """
        if producer1 is not None and consumer.reads(producer1.dest):
            return HazardUnit.STALL_EX_PRODUCER
        if producer2 is not None and consumer.reads(producer2.dest):
            return HazardUnit.STALL_MEM_PRODUCER
        return 0

# ─────────────────────────────────────────────────────────────────────────────
# Timeline Calculator (closed form)
# ─────────────────────────────────────────────────────────────────────────────

class StageTimes:
    """Stage-entry cycles for one instruction."""

    __slots__ = ("index", "instruction", "stalls", "if_cycle")

    def __init__(self, index: int, instruction: Instruction,
                 stalls: int, if_cycle: int):
        self.index = index
        self.instruction = instruction
        self.stalls = stalls
        self.if_cycle = if_cycle

    @property
    def id_cycle(self) -> int:
        return self.if_cycle + ID

    @property
    def ex_cycle(self) -> int:
        return self.if_cycle + EX

    @property
    def mem_cycle(self) -> int:
        return self.if_cycle + MEM

    @property
    def wb_cycle(self) -> int:
        return self.if_cycle + WB

    def cycle(self, stage: int) -> int:
        return self.if_cycle + stage

    @property
    def cycles(self) -> Tuple[int, ...]:
        return tuple(self.if_cycle + s for s in range(NUM_STAGES))

    def __repr__(self):
        return (f"StageTimes(idx={self.index} {self.instruction.text!r} "
                f"IF={self.if_cycle} WB={self.wb_cycle} stalls={self.stalls})")


class PipelineSchedule:
    """Per-instruction timeline plus aggregate totals."""

    def __init__(self, entries: List[StageTimes]):
        self.entries = entries

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> StageTimes:
        return self.entries[index]

    def __iter__(self) -> Iterator[StageTimes]:
        return iter(self.entries)

    @property
    def instruction_count(self) -> int:
        return len(self.entries)

    @property
    def base_cycles(self) -> int:
        return self.instruction_count + FILL_DRAIN_CYCLES

    @property
    def total_stalls(self) -> int:
        return sum(e.stalls for e in self.entries)

    @property
    def total_cycles(self) -> int:
        return self.entries[-1].wb_cycle

    @property
    def stalls_per_instruction(self) -> List[int]:
        return [e.stalls for e in self.entries]


def compute_timeline(program: Program) -> PipelineSchedule:
    """
    Closed-form schedule.  Walks the program once with a two-deep window of
    the most recent producers.  Bubbles inserted ahead of an instruction
    take the slot behind it, so a stalled instruction pushes its own
    predecessor out of the window for the next consumer.
    """
    entries: List[StageTimes] = []
    recent1: Optional[Instruction] = None
    recent2: Optional[Instruction] = None
    prior_if = 0

    for i, inst in enumerate(program):
        s = HazardUnit.stalls_required(inst, recent1, recent2)
        if_cycle = prior_if + 1 + s
        entries.append(StageTimes(i, inst, s, if_cycle))
        prior_if = if_cycle

        recent2 = recent1 if s == 0 else None
        recent1 = inst

    return PipelineSchedule(entries)

# ─────────────────────────────────────────────────────────────────────────────
# Cycle Simulator
# ─────────────────────────────────────────────────────────────────────────────

class PipelineState:
    """Slot array and counters, owned by a single CycleSimulator."""

    __slots__ = ("slots", "pc", "pending_stalls", "completed",
                 "cycle", "stall_cycles")

    def __init__(self):
        self.slots: List[Optional[int]] = [None] * NUM_STAGES
        self.pc = 0
        self.pending_stalls = 0
        self.completed = 0
        self.cycle = 0
        self.stall_cycles = 0


class CycleSnapshot:
    """Slot occupancy during one simulated cycle."""

    __slots__ = ("cycle", "slots", "stalls_pending", "stalled")

    def __init__(self, cycle: int, slots: Sequence[Optional[int]],
                 stalls_pending: int, stalled: bool):
        self.cycle = cycle
        self.slots: Tuple[Optional[int], ...] = tuple(slots)
        self.stalls_pending = stalls_pending
        self.stalled = stalled

    def occupant(self, stage: int) -> Optional[int]:
        return self.slots[stage]

    def __repr__(self):
        cells = " ".join(f"{name}={'-' if idx is None else idx}"
                         for name, idx in zip(STAGES, self.slots))
        return f"CycleSnapshot(C{self.cycle} {cells} pending={self.stalls_pending})"


class CycleSimulator:
    """
    Steps a 5-slot pipeline one cycle at a time, inserting bubbles into EX
    while the Decode occupant waits on a producer.
    """

    def __init__(self, program: Program, verbose: bool = False):
        self.program = program
        self.state = PipelineState()
        self.verbose = verbose

        self.snapshots: List[CycleSnapshot] = []
        self.stalls_per_instruction: List[int] = [0] * len(program)
        self.completion_cycles: List[Optional[int]] = [None] * len(program)
        self._entries: List[List[Optional[int]]] = [
            [None] * len(program) for _ in range(NUM_STAGES)
        ]

    # ── Hazard detection ────────────────────────────────────────────────

    def _instr(self, idx: Optional[int]) -> Optional[Instruction]:
        return None if idx is None else self.program[idx]

    def _stalls_for(self, id_idx: Optional[int], ex_idx: Optional[int],
                    mem_idx: Optional[int]) -> int:
        if id_idx is None:
            return 0
        return HazardUnit.stalls_required(
            self.program[id_idx], self._instr(ex_idx), self._instr(mem_idx))

    # ── Cycle phases ────────────────────────────────────────────────────

    def _insert_bubble(self):
        """MEM→WB, EX→MEM, bubble into EX; ID and IF hold."""
        slots = self.state.slots
        slots[WB] = slots[MEM]
        slots[MEM] = slots[EX]
        slots[EX] = None

        self.state.pending_stalls -= 1
        self.state.stall_cycles += 1
        if slots[ID] is not None:
            self.stalls_per_instruction[slots[ID]] += 1

    def _advance(self):
        """Normal shift plus fetch; hazard is decided before committing."""
        st = self.state
        slots = st.slots

        # Current IF occupant is about to enter ID; its producers will be
        # the current ID (→ EX) and EX (→ MEM) occupants.
        stalls = self._stalls_for(slots[IF], slots[ID], slots[EX])

        slots[WB] = slots[MEM]
        slots[MEM] = slots[EX]
        slots[EX] = slots[ID]
        slots[ID] = slots[IF]
        if st.pc < len(self.program):
            slots[IF] = st.pc
            st.pc += 1
        else:
            slots[IF] = None

        st.pending_stalls = stalls

    def _record_entries(self):
        cycle = self.state.cycle
        for stage, idx in enumerate(self.state.slots):
            if idx is not None and self._entries[stage][idx] is None:
                self._entries[stage][idx] = cycle

    def _retire(self):
        """The WB occupant completes during the current cycle."""
        st = self.state
        idx = st.slots[WB]
        if idx is None:
            return
        self.completion_cycles[idx] = st.cycle
        st.completed += 1
        st.slots[WB] = None

    # ── Main cycle ──────────────────────────────────────────────────────

    @property
    def done(self) -> bool:
        return self.state.completed == len(self.program)

    def step(self) -> CycleSnapshot:
        """Execute one pipeline cycle."""
        st = self.state
        st.cycle += 1

        stalled = st.pending_stalls > 0
        if stalled:
            self._insert_bubble()
        else:
            self._advance()

        self._record_entries()
        snap = CycleSnapshot(st.cycle, st.slots, st.pending_stalls, stalled)
        self.snapshots.append(snap)
        if self.verbose:
            self._print_state(snap)

        self._retire()
        return snap

    def run(self, max_cycles: Optional[int] = None) -> int:
        """Step until every instruction has retired; returns cycles elapsed."""
        if max_cycles is None:
            max_cycles = worst_case_cycles(len(self.program))
        while not self.done:
            if self.state.cycle >= max_cycles:
                raise SimulationError(
                    f"pipeline did not drain within {max_cycles} cycles "
                    f"({self.state.completed}/{len(self.program)} retired)")
            self.step()
        return self.state.cycle

    # ── Results ─────────────────────────────────────────────────────────

    @property
    def total_cycles(self) -> int:
        return self.state.cycle

    @property
    def total_stalls(self) -> int:
        return self.state.stall_cycles

    @property
    def base_cycles(self) -> int:
        return len(self.program) + FILL_DRAIN_CYCLES

    def stage_entry_cycles(self, stage: int) -> List[Optional[int]]:
        """First cycle each instruction occupied *stage* (None if never)."""
        return list(self._entries[stage])

    # ── Debug / display ─────────────────────────────────────────────────

    def _print_state(self, snap: CycleSnapshot):
        for event in snapshot_events(snap, self.program):
            print(format_trace_event(event, self.program))
        if snap.stalled:
            print(f"C{snap.cycle:3d}: -- bubble in EX "
                  f"({snap.stalls_pending} stall(s) pending)")


def worst_case_cycles(n: int) -> int:
    """Every instruction stalling the maximum, plus fill/drain."""
    return FILL_DRAIN_CYCLES + n * (1 + HazardUnit.STALL_EX_PRODUCER) + 1

# ─────────────────────────────────────────────────────────────────────────────
# Trace events
# ─────────────────────────────────────────────────────────────────────────────

class TraceEvent:
    __slots__ = ("cycle", "stage", "index", "text")

    def __init__(self, cycle: int, stage: int, index: int, text: str):
        self.cycle = cycle
        self.stage = stage
        self.index = index
        self.text = text

    def __repr__(self):
        return f"TraceEvent(C{self.cycle} {STAGES[self.stage]} [{self.index}] {self.text!r})"


_TRACE_LABELS = {IF: "FETCH", ID: "DECODE", EX: "EXEC", MEM: "MEM", WB: "WB"}


def snapshot_events(snap: CycleSnapshot, program: Program) -> List[TraceEvent]:
    """Events for one snapshot, back of the pipeline first."""
    return [TraceEvent(snap.cycle, stage, idx, program[idx].text)
            for stage, idx in reversed(list(enumerate(snap.slots)))
            if idx is not None]


def trace_events(sim: CycleSimulator) -> Iterator[TraceEvent]:
    for snap in sim.snapshots:
        yield from snapshot_events(snap, sim.program)


def format_trace_event(event: TraceEvent, program: Program) -> str:
    line = f"C{event.cycle:3d}: {_TRACE_LABELS[event.stage]:<6} [{event.index:2d}] {event.text}"
    if event.stage == MEM:
        line += " (bypassed)"
    elif event.stage == WB:
        line += f" -> write {reg_name(program[event.index].dest)}"
    return line

# ─────────────────────────────────────────────────────────────────────────────
# Loader (tolerant text parser)
# ─────────────────────────────────────────────────────────────────────────────

_WORD_RE = re.compile(r"[A-Za-z]+")
_REG_RE = re.compile(r"[xX](\d+)")
BOM = "\ufeff"


def _find_opcode(text: str) -> Optional[str]:
    for word in _WORD_RE.findall(text):
        word = word.lower()
        if word in Op.ARITY:
            return word
    return None


def parse_line(line: str, lineno: int = 0) -> Optional[Instruction]:
    """
    Parse one line.  Returns None for blank, comment-only or non-instruction
    lines; raises ArityMismatchError on a wrong register count.
    """
    if line.startswith(BOM):
        line = line[len(BOM):]
    line = line.split("#", 1)[0].rstrip()
    if not line.strip():
        return None

    op = _find_opcode(line)
    if op is None:
        return None

    regs = [int(m.group(1)) for m in _REG_RE.finditer(line)][:3]
    need = Op.ARITY[op] + 1
    if len(regs) != need:
        raise ArityMismatchError(f"need {need} regs for {op}; got {len(regs)}",
                                 lineno=lineno, line=line)
    return Instruction(op, regs[0], regs[1:])


def parse_program(lines: Iterable[str]) -> Program:
    """Parse every line (numbered from 1) into a Program."""
    instructions = []
    for lineno, line in enumerate(lines, start=1):
        inst = parse_line(line, lineno)
        if inst is not None:
            instructions.append(inst)
    return Program(instructions)


def load_program_file(path: str) -> Program:
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return parse_program(f)

# ─────────────────────────────────────────────────────────────────────────────
# Reports
# ─────────────────────────────────────────────────────────────────────────────

def print_timeline_report(schedule: PipelineSchedule):
    print(f"Instructions: {schedule.instruction_count}")
    print(f"Base cycles (N+4): {schedule.base_cycles}")
    print(f"Total stalls: {schedule.total_stalls}")
    print(f"Total cycles with stalls: {schedule.total_cycles}")
    print("Per-instruction stalls (index:stalls):")
    print(", ".join(f"{e.index}:{e.stalls}" for e in schedule))


def print_cycle_report(sim: CycleSimulator):
    print(f"\nSimulation finished in {sim.total_cycles} cycles.")
    print(f"Total stalls (bubble cycles inserted): {sim.total_stalls}")
    print(f"Base cycles (N+4): {sim.base_cycles}")
    print(f"Total cycles with stalls: {sim.total_cycles}")


def cross_check(schedule: PipelineSchedule,
                sim: CycleSimulator) -> List[Tuple[str, object, object]]:
    """(description, timeline value, simulator value) for each agreed quantity."""
    checks: List[Tuple[str, object, object]] = [
        ("total cycles", schedule.total_cycles, sim.total_cycles),
        ("total stalls", schedule.total_stalls, sim.total_stalls),
        ("per-instruction stalls",
         schedule.stalls_per_instruction, sim.stalls_per_instruction),
    ]
    for stage in (EX, MEM, WB):
        checks.append((f"{STAGES[stage]} entry cycles",
                       [e.cycle(stage) for e in schedule],
                       sim.stage_entry_cycles(stage)))
    return checks


def print_cross_check(schedule: PipelineSchedule, sim: CycleSimulator) -> bool:
    print("\n═══ Timeline vs. Cycle Simulator ═══")
    all_pass = True
    for desc, expected, actual in cross_check(schedule, sim):
        ok = expected == actual
        all_pass = all_pass and ok
        status = "✓" if ok else "✗"
        print(f"  {status}  {desc}  (timeline {expected}, simulator {actual})")
    if all_pass:
        print("\n  Schedules agree")
    else:
        print("\n  Schedules DISAGREE, rerun with --verbose")
    return all_pass


def write_timeline_csv(path: str, schedule: PipelineSchedule):
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["idx", "instruction", "IF", "ID", "EX", "MEM", "WB",
                         "stalls_here"])
        for e in schedule:
            writer.writerow([e.index, e.instruction.text, *e.cycles, e.stalls])


def write_cycle_csv(path: str, sim: CycleSimulator):
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["cycle", *STAGES, "stalls_pending"])
        for snap in sim.snapshots:
            cells = ["" if idx is None else sim.program[idx].text
                     for idx in snap.slots]
            writer.writerow([snap.cycle, *cells, snap.stalls_pending])

# ─────────────────────────────────────────────────────────────────────────────
# Demo program
# ─────────────────────────────────────────────────────────────────────────────

def demo_program() -> List[str]:
    """
    Exercises every stall case:

        add x1, x2, x3      # no hazard
        sub x4, x1, x5      # x1 from i-1              -> 2 stalls
        mov x6, x7          # no hazard
        add x8, x4, x9      # x4 from i-2              -> 1 stall
        add x11, x12, x13   # no hazard
        sub x10, x11, x8    # x11 from i-1, x8 from i-2 -> 2 stalls, not 3
        mov x14, x1         # x1 written back long ago

    5 stalls, 7 + 4 + 5 = 16 cycles.
    """
    return [
        "add x1, x2, x3",
        "sub x4, x1, x5",
        "mov x6, x7",
        "add x8, x4, x9",
        "add x11, x12, x13",
        "sub x10, x11, x8",
        "mov x14, x1",
    ]

# ─────────────────────────────────────────────────────────────────────────────
# Main
# ─────────────────────────────────────────────────────────────────────────────

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="5-stage pipeline stall simulator (no forwarding)"
    )
    parser.add_argument("--file", "-f", type=str, default=None,
                        help="Instruction file (add/sub/mov, one per line)")
    parser.add_argument("--mode", "-m", choices=["timeline", "cycles", "both"],
                        default="both",
                        help="Scheduler(s) to run (default both)")
    parser.add_argument("--timeline-csv", type=str,
                        default="pipeline_timeline.csv",
                        help="Timeline CSV output (default pipeline_timeline.csv)")
    parser.add_argument("--cycles-csv", type=str,
                        default="pipeline_cycles.csv",
                        help="Cycle trace CSV output (default pipeline_cycles.csv)")
    parser.add_argument("--no-csv", action="store_true",
                        help="Do not write CSV files")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Print stage occupancy every cycle")
    args = parser.parse_args(argv)

    try:
        if args.file:
            program = load_program_file(args.file)
            print(f"Loaded {len(program)} instructions from {args.file}")
        else:
            program = parse_program(demo_program())
            print(f"Running built-in demo program ({len(program)} instructions)\n")
    except OSError:
        print(f"Error: cannot open {args.file}", file=sys.stderr)
        return 1
    except ArityMismatchError as e:
        print(e, file=sys.stderr)
        return 2
    except EmptyProgramError as e:
        print(e, file=sys.stderr)
        return 4

    schedule = None
    sim = None
    try:
        if args.mode in ("timeline", "both"):
            schedule = compute_timeline(program)
            print_timeline_report(schedule)
            if not args.no_csv:
                write_timeline_csv(args.timeline_csv, schedule)

        if args.mode in ("cycles", "both"):
            if args.verbose:
                print("\nStarting cycle-by-cycle simulation (no-forwarding model)")
                print(f"Total instructions: {len(program)}\n")
            sim = CycleSimulator(program, verbose=args.verbose)
            sim.run()
            print_cycle_report(sim)
            if not args.no_csv:
                write_cycle_csv(args.cycles_csv, sim)
                print(f"CSV written to {args.cycles_csv}")
    except OSError as e:
        print(f"Error: cannot write {e.filename}", file=sys.stderr)
        return 6

    if schedule is not None and sim is not None:
        if not print_cross_check(schedule, sim):
            return 3
    return 0


if __name__ == "__main__":
    sys.exit(main())
