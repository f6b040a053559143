import pytest

from pipeline_stall_sim import parse_program


@pytest.fixture
def scenario_a():
    return parse_program(["add x1, x2, x3", "add x4, x5, x6", "add x7, x8, x9"])


@pytest.fixture
def scenario_b():
    return parse_program(["add x1, x2, x3", "sub x4, x1, x5"])


@pytest.fixture
def scenario_c():
    return parse_program(["mov x1, x2", "add x3, x4, x5", "sub x6, x1, x4"])
