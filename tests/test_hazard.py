import pytest

from pipeline_stall_sim import HazardUnit, Instruction, Op


def add(dest, a, b):
    return Instruction(Op.ADD, dest, [a, b])


CONSUMER = Instruction(Op.SUB, 4, [1, 5])


def test_no_producers():
    assert HazardUnit.stalls_required(CONSUMER, None, None) == 0


def test_ex_producer_two_stalls():
    assert HazardUnit.stalls_required(CONSUMER, add(1, 2, 3), None) == 2


def test_mem_producer_one_stall():
    assert HazardUnit.stalls_required(CONSUMER, add(7, 2, 3), add(5, 2, 3)) == 1


def test_mem_producer_behind_bubble():
    assert HazardUnit.stalls_required(CONSUMER, None, add(5, 2, 3)) == 1


def test_priority_not_sum():
    # depends on both producers
    assert HazardUnit.stalls_required(CONSUMER, add(1, 2, 3), add(5, 2, 3)) == 2


def test_write_only_overlap_is_not_a_hazard():
    # WAW on x4, consumer does not read it
    assert HazardUnit.stalls_required(CONSUMER, add(4, 2, 3), add(4, 2, 3)) == 0


def test_mov_consumer():
    mov = Instruction(Op.MOV, 9, [1])
    assert HazardUnit.stalls_required(mov, add(1, 2, 3), None) == 2
    assert HazardUnit.stalls_required(mov, add(2, 2, 3), add(1, 2, 3)) == 1


@pytest.mark.parametrize("p1,p2", [
    (None, None),
    (add(1, 2, 3), None),
    (add(8, 2, 3), add(5, 0, 0)),
])
def test_deterministic(p1, p2):
    first = HazardUnit.stalls_required(CONSUMER, p1, p2)
    assert all(HazardUnit.stalls_required(CONSUMER, p1, p2) == first
               for _ in range(5))
