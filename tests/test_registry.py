"""
Tests for the step registry — registration and dependency ordering.
"""

import pytest

from agentvm.core.engine.registry import StepRegistry
from agentvm.core.errors import (
    CyclicDependencyError,
    DuplicateStepError,
    MissingDependencyError,
)
from agentvm.core.models.step import Step
from agentvm.core.models.variant import Variant


def _ids(steps: list[Step]) -> list[str]:
    return [s.id for s in steps]


class TestRegistration:
    def test_register_and_get(self):
        registry = StepRegistry([Step(id="a")])
        assert "a" in registry
        assert registry.get("a").id == "a"
        assert registry.get("missing") is None
        assert len(registry) == 1

    def test_duplicate_rejected(self):
        registry = StepRegistry([Step(id="a")])
        with pytest.raises(DuplicateStepError) as exc:
            registry.register(Step(id="a", description="again"))
        assert exc.value.step_id == "a"

    def test_iteration_keeps_registration_order(self):
        registry = StepRegistry([Step(id="c"), Step(id="a"), Step(id="b")])
        assert [s.id for s in registry] == ["c", "a", "b"]


class TestResolveOrder:
    def test_dependencies_first(self):
        registry = StepRegistry([
            Step(id="boot", depends_on=("disk", "iso")),
            Step(id="disk"),
            Step(id="iso"),
        ])
        order = _ids(registry.resolve_order(Variant.ARCH))
        assert order.index("disk") < order.index("boot")
        assert order.index("iso") < order.index("boot")

    def test_siblings_keep_registration_order(self):
        registry = StepRegistry([
            Step(id="root"),
            Step(id="z", depends_on=("root",)),
            Step(id="y", depends_on=("root",)),
            Step(id="x", depends_on=("root",)),
        ])
        assert _ids(registry.resolve_order(Variant.ARCH)) == ["root", "z", "y", "x"]

    def test_order_is_stable_across_calls(self):
        registry = StepRegistry([
            Step(id="a"),
            Step(id="b", depends_on=("a",)),
            Step(id="c"),
            Step(id="d", depends_on=("c", "b")),
        ])
        first = _ids(registry.resolve_order(Variant.NIXOS))
        assert first == _ids(registry.resolve_order(Variant.NIXOS))
        assert first == ["a", "b", "c", "d"]

    def test_missing_dependency(self):
        registry = StepRegistry([Step(id="boot", depends_on=("disk",))])
        with pytest.raises(MissingDependencyError) as exc:
            registry.resolve_order(Variant.ARCH)
        assert exc.value.step_id == "boot"
        assert exc.value.dependency == "disk"

    def test_cycle_detected(self):
        registry = StepRegistry([
            Step(id="ok"),
            Step(id="a", depends_on=("c",)),
            Step(id="b", depends_on=("a",)),
            Step(id="c", depends_on=("b",)),
        ])
        with pytest.raises(CyclicDependencyError) as exc:
            registry.resolve_order(Variant.ARCH)
        assert set(exc.value.step_ids) == {"a", "b", "c"}

    def test_self_dependency_is_a_cycle(self):
        registry = StepRegistry([Step(id="a", depends_on=("a",))])
        with pytest.raises(CyclicDependencyError):
            registry.resolve_order(Variant.ARCH)

    def test_variant_filter(self):
        registry = StepRegistry([
            Step(id="shared"),
            Step(id="arch-only", variants=frozenset({Variant.ARCH})),
            Step(id="nixos-only", variants=frozenset({Variant.NIXOS})),
        ])
        assert _ids(registry.resolve_order(Variant.ARCH)) == ["shared", "arch-only"]
        assert _ids(registry.resolve_order(Variant.NIXOS)) == ["shared", "nixos-only"]

    def test_dependency_on_other_variant_step_is_missing(self):
        registry = StepRegistry([
            Step(id="nix-build", variants=frozenset({Variant.NIXOS})),
            Step(id="boot", depends_on=("nix-build",), variants=frozenset({Variant.ARCH})),
        ])
        with pytest.raises(MissingDependencyError):
            registry.resolve_order(Variant.ARCH)

    def test_empty_registry(self):
        assert StepRegistry().resolve_order(Variant.ARCH) == []


class TestDependents:
    def test_transitive_dependents(self):
        registry = StepRegistry([
            Step(id="a"),
            Step(id="b", depends_on=("a",)),
            Step(id="c", depends_on=("b",)),
            Step(id="d"),
        ])
        assert registry.dependents_of("a", Variant.ARCH) == {"b", "c"}
        assert registry.dependents_of("d", Variant.ARCH) == set()
