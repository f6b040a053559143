import csv

from pipeline_stall_sim import (
    WB, CycleSimulator, compute_timeline, cross_check,
    format_trace_event, print_cross_check, print_cycle_report,
    print_timeline_report, trace_events, write_cycle_csv, write_timeline_csv,
)


def _read_csv(path):
    with open(path, newline="") as f:
        return list(csv.reader(f))


def test_timeline_report(scenario_b, capsys):
    print_timeline_report(compute_timeline(scenario_b))
    out = capsys.readouterr().out.splitlines()
    assert out == [
        "Instructions: 2",
        "Base cycles (N+4): 6",
        "Total stalls: 2",
        "Total cycles with stalls: 8",
        "Per-instruction stalls (index:stalls):",
        "0:0, 1:2",
    ]


def test_cycle_report(scenario_c, capsys):
    sim = CycleSimulator(scenario_c)
    sim.run()
    print_cycle_report(sim)
    out = capsys.readouterr().out
    assert "Simulation finished in 8 cycles." in out
    assert "Total stalls (bubble cycles inserted): 1" in out
    assert "Base cycles (N+4): 7" in out


def test_timeline_csv(scenario_b, tmp_path):
    path = tmp_path / "timeline.csv"
    write_timeline_csv(str(path), compute_timeline(scenario_b))
    rows = _read_csv(path)
    assert rows[0] == ["idx", "instruction", "IF", "ID", "EX", "MEM", "WB", "stalls_here"]
    assert rows[1] == ["0", "add x1, x2, x3", "1", "2", "3", "4", "5", "0"]
    assert rows[2] == ["1", "sub x4, x1, x5", "4", "5", "6", "7", "8", "2"]


def test_cycle_csv(scenario_b, tmp_path):
    sim = CycleSimulator(scenario_b)
    sim.run()
    path = tmp_path / "cycles.csv"
    write_cycle_csv(str(path), sim)
    rows = _read_csv(path)
    assert rows[0] == ["cycle", "IF", "ID", "EX", "MEM", "WB", "stalls_pending"]
    assert len(rows) == 1 + 8
    assert rows[3] == ["3", "", "sub x4, x1, x5", "add x1, x2, x3", "", "", "2"]
    assert rows[8] == ["8", "", "", "", "", "sub x4, x1, x5", "0"]


def test_trace_events_cover_every_occupied_slot(scenario_a):
    sim = CycleSimulator(scenario_a)
    sim.run()
    events = list(trace_events(sim))
    # 3 instructions, 5 stages each, no stalls
    assert len(events) == 15
    first_wb = next(e for e in events if e.stage == WB)
    assert (first_wb.cycle, first_wb.index) == (5, 0)
    assert format_trace_event(first_wb, sim.program) == \
        "C  5: WB     [ 0] add x1, x2, x3 -> write x1"


def test_cross_check_agrees(scenario_c, capsys):
    schedule = compute_timeline(scenario_c)
    sim = CycleSimulator(scenario_c)
    sim.run()
    checks = cross_check(schedule, sim)
    assert [desc for desc, _, _ in checks] == [
        "total cycles", "total stalls", "per-instruction stalls",
        "EX entry cycles", "MEM entry cycles", "WB entry cycles",
    ]
    assert all(expected == actual for _, expected, actual in checks)
    assert print_cross_check(schedule, sim)
    assert "Schedules agree" in capsys.readouterr().out


def test_cross_check_reports_disagreement(scenario_b, scenario_c, capsys):
    # schedules of two different programs must not agree
    sim = CycleSimulator(scenario_c)
    sim.run()
    assert not print_cross_check(compute_timeline(scenario_b), sim)
    assert "✗" in capsys.readouterr().out
