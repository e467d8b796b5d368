"""Stack-aware refactor policy: guidance, notes and verification commands."""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class RefactorGuidance:
    """Named refactor discipline the prompt asks the agent to follow."""

    name: str
    purpose: str
    applies_when: str


@dataclass(slots=True, frozen=True)
class StackSignals:
    has_typescript: bool = False
    has_node_runtime: bool = False
    has_next: bool = False
    has_react: bool = False
    has_vite: bool = False
    has_rust: bool = False
    has_python: bool = False
    has_go: bool = False
    has_java_or_kotlin: bool = False
    has_swift: bool = False
    has_express_or_fastify: bool = False


@dataclass(slots=True, frozen=True)
class RefactorPolicy:
    baseline: RefactorGuidance
    stack_guidance: tuple[RefactorGuidance, ...] = ()
    verification_commands: tuple[str, ...] = ()
    notes: tuple[str, ...] = ()


BASELINE_GUIDANCE = RefactorGuidance(
    name="safe-refactoring",
    purpose="Cross-language refactor workflow with baseline checks, invariants and micro-steps.",
    applies_when="Always",
)

_RUST_GUIDANCE = RefactorGuidance(
    name="rust-refactoring",
    purpose="Rust module extraction with trait boundaries and compiler-checked impact.",
    applies_when="Rust stacks",
)
_REACT_GUIDANCE = RefactorGuidance(
    name="react-architecture",
    purpose="Component and hook extraction with stable rendering behavior.",
    applies_when="Next.js or React stacks",
)
_NODE_BACKEND_GUIDANCE = RefactorGuidance(
    name="node-backend-patterns",
    purpose="Service-level boundaries for middleware, error handling and auth.",
    applies_when="Node backend stacks",
)
_PYTHON_GUIDANCE = RefactorGuidance(
    name="python-packaging",
    purpose="Split modules along package boundaries and keep public imports stable.",
    applies_when="Python stacks",
)
_SWIFT_GUIDANCE = RefactorGuidance(
    name="swift-architecture",
    purpose="Swift/iOS module boundaries and code-quality guidance.",
    applies_when="Swift/iOS stacks",
)


def _has_word(source: str, term: str) -> bool:
    return re.search(rf"\b{re.escape(term)}\b", source) is not None


def detect_signals(tech_stack: str) -> StackSignals:
    stack = tech_stack.lower()
    has_express_or_fastify = _has_word(stack, "express") or _has_word(stack, "fastify")
    has_next = "next.js" in stack or _has_word(stack, "next")
    has_vite = _has_word(stack, "vite")
    has_node_mention = "node.js" in stack or _has_word(stack, "node")
    return StackSignals(
        has_typescript="typescript" in stack or _has_word(stack, "ts"),
        has_node_runtime=has_node_mention or has_express_or_fastify or has_next or has_vite,
        has_next=has_next,
        has_react=_has_word(stack, "react"),
        has_vite=has_vite,
        has_rust=_has_word(stack, "rust"),
        has_python=_has_word(stack, "python"),
        has_go=_has_word(stack, "go") or _has_word(stack, "golang"),
        has_java_or_kotlin=_has_word(stack, "java") or _has_word(stack, "kotlin"),
        has_swift=any(_has_word(stack, term) for term in ("swift", "xcode", "ios")),
        has_express_or_fastify=has_express_or_fastify,
    )


def is_likely_node_backend(signals: StackSignals, project_shape: str) -> bool:
    if signals.has_express_or_fastify:
        return True
    if project_shape != "api-service":
        return False
    if (
        signals.has_rust
        or signals.has_python
        or signals.has_go
        or signals.has_java_or_kotlin
        or signals.has_swift
    ):
        return False
    if signals.has_next or (signals.has_react and signals.has_vite):
        return False
    return signals.has_node_runtime or signals.has_typescript


def verification_commands_for(  # noqa: PLR0911
    signals: StackSignals,
    project_shape: str,
) -> tuple[str, ...]:
    """Return one-shot lint/test/build commands for the detected stack."""

    if signals.has_rust:
        return ("cargo fmt", "cargo clippy --fix", "cargo test")
    if signals.has_swift:
        return ("swift format lint .", "swift test")
    if signals.has_vite and signals.has_typescript:
        return ("npx tsc --noEmit", "vitest run", "vite build")
    if signals.has_next and signals.has_typescript:
        return ("npx tsc --noEmit", "npm run lint", "npm run test")
    if signals.has_python:
        return ("ruff check .", "ruff format --check .", "pytest -q")
    if signals.has_go:
        return ("go test ./...", "golangci-lint run")
    if signals.has_java_or_kotlin:
        return ("./gradlew test", "./gradlew check")
    if signals.has_typescript and is_likely_node_backend(signals, project_shape):
        return ("npx tsc --noEmit", "npm run test", "npm run build")
    return ("npm run lint", "npm run test", "npm run build")


def build_refactor_policy(tech_stack: str, project_shape: str) -> RefactorPolicy:
    signals = detect_signals(tech_stack)
    guidance: list[RefactorGuidance] = []
    notes: list[str] = []

    if signals.has_rust:
        guidance.append(_RUST_GUIDANCE)
    if signals.has_next or signals.has_react:
        guidance.append(_REACT_GUIDANCE)
    if is_likely_node_backend(signals, project_shape):
        guidance.append(_NODE_BACKEND_GUIDANCE)
    if signals.has_python:
        guidance.append(_PYTHON_GUIDANCE)
    if signals.has_swift:
        guidance.append(_SWIFT_GUIDANCE)
        notes.append(
            "Install `swift-format` separately and run `swift format lint .` plus "
            "`swift test` during refactors.",
        )
    if signals.has_next:
        notes.append("Use `eslint`-based lint scripts instead of `next lint`.")
    if signals.has_vite and signals.has_typescript:
        notes.append(
            "Use `vite build` and `vitest run` for deterministic single-pass verification.",
        )

    return RefactorPolicy(
        baseline=BASELINE_GUIDANCE,
        stack_guidance=tuple(dict.fromkeys(guidance)),
        verification_commands=tuple(
            dict.fromkeys(verification_commands_for(signals, project_shape)),
        ),
        notes=tuple(notes),
    )
