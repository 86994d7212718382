"""Tests for scoring/policy parsing and context building."""
import pytest

from bitlab.config import DEFAULT_MAX_OPERATIONS, DEFAULT_OPERATION_COST
from bitlab.engine.catalog import SourceLibrary
from bitlab.engine.policy import ScoringPolicyLoader, parse_policy, parse_scoring


def test_parse_lua_scoring():
    cfg = parse_scoring("initial_budget = 40\ncosts = { XOR = 2, NOT = 1 }\n")
    assert cfg.initial_budget == 40
    assert cfg.cost_of("XOR") == 2
    assert cfg.cost_of("NOT") == 1
    assert cfg.cost_of("ROL") == DEFAULT_OPERATION_COST


def test_parse_yaml_scoring_skips_bad_costs():
    cfg = parse_scoring("initial_budget: 12\ncosts:\n  XOR: 3\n  NOT: -1\n  SHL: lots\n")
    assert cfg.initial_budget == 12
    assert cfg.costs == {"XOR": 3}


def test_scoring_without_budget():
    cfg = parse_scoring("costs = { XOR = 2 }")
    assert cfg.initial_budget is None


def test_parse_lua_policy():
    cfg = parse_policy(
        'max_operations = 3\nallowed_operations = {"XOR", "NOT"}\nforbidden = {"NOT"}\n'
    )
    assert cfg.max_operations == 3
    assert cfg.allowed == frozenset({"XOR", "NOT"})
    assert cfg.forbidden == frozenset({"NOT"})
    assert cfg.denial_reason("NOT") == "forbidden by policy"
    assert cfg.denial_reason("SHL") == "not in the policy whitelist"
    assert cfg.denial_reason("XOR") is None


def test_parse_yaml_policy():
    cfg = parse_policy("max_operations: 7\nforbidden_operations: [ROL]\n")
    assert cfg.max_operations == 7
    assert cfg.allowed is None
    assert cfg.forbidden == frozenset({"ROL"})


def test_empty_policy_uses_defaults():
    cfg = parse_policy("-- nothing here")
    assert cfg.max_operations == DEFAULT_MAX_OPERATIONS
    assert cfg.allowed is None


@pytest.fixture
def loader():
    lib = SourceLibrary()
    lib.add_scoring("scoring.lua", "initial_budget = 25\ncosts = { XOR = 4 }")
    lib.add_policy("policy.lua", "max_operations = 9")
    return ScoringPolicyLoader(lib)


def test_build_context_uses_declared_budget(loader):
    ctx = loader.build_context("0101", 1000, ["XOR"], ["entropy"])
    assert ctx.budget == 25
    assert ctx.initial_budget == 25
    assert ctx.scoring_config.cost_of("XOR") == 4
    assert ctx.policy_config.max_operations == 9
    assert ctx.enabled_operations == ("XOR",)


def test_build_context_keeps_caller_budget_without_declaration():
    lib = SourceLibrary()
    lib.add_scoring("scoring.lua", "costs = { XOR = 4 }")
    ctx = ScoringPolicyLoader(lib).build_context("01", 77, ["XOR"], ["entropy"])
    assert ctx.budget == 77


def test_missing_sources_fall_back_to_defaults():
    loader = ScoringPolicyLoader(SourceLibrary())
    assert loader.load_scoring().cost_of("ANY") == DEFAULT_OPERATION_COST
    assert loader.load_policy().max_operations == DEFAULT_MAX_OPERATIONS


def test_unparseable_yaml_budget_is_ignored():
    lib = SourceLibrary()
    lib.add_scoring("scoring.yaml", "initial_budget: plenty\ncosts:\n  XOR: 2\n")
    cfg = ScoringPolicyLoader(lib).load_scoring()
    assert cfg.initial_budget is None
    assert cfg.costs == {"XOR": 2}


@pytest.mark.parametrize(
    "source",
    [
        "initial_budget: -5\ncosts:\n  XOR: 2\n",
        "initial_budget = -5\ncosts = { XOR = 2 }\n",
        "initial_budget: 2.5\n",
        "initial_budget: true\n",
    ],
)
def test_invalid_declared_budget_is_ignored(source):
    assert parse_scoring(source).initial_budget is None


def test_zero_budget_is_kept():
    assert parse_scoring("initial_budget = 0\n").initial_budget == 0


def test_unknown_source_id_uses_first(loader):
    assert loader.load_policy("missing").max_operations == 9
