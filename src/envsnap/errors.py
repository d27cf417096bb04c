"""Typed resolver error model with stable, machine-readable error codes."""

from __future__ import annotations

import builtins
from collections.abc import Mapping
from enum import StrEnum


class ErrorCode(StrEnum):
    """Stable error identifiers used across API surfaces."""

    VALIDATION = "E_VALIDATION"
    POLICY = "E_POLICY"
    FETCH = "E_FETCH"
    INTEGRITY = "E_INTEGRITY"
    PARSE = "E_PARSE"
    NOT_FOUND = "E_NOT_FOUND"
    CONFLICT = "E_CONFLICT"
    TIMEOUT = "E_TIMEOUT"
    CANCELLED = "E_CANCELLED"
    WRITE = "E_WRITE"
    MANIFEST = "E_MANIFEST"
    DESCRIPTOR = "E_DESCRIPTOR"


class EnvsnapError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code: str
    hint: str | None
    context: dict[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})

    @property
    def message(self) -> str:
        return self.args[0] if self.args else ""

    def __str__(self) -> str:
        parts = [self.message]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": self.message,
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ValidationError(EnvsnapError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.VALIDATION, hint=hint, context=context)


class PolicyError(EnvsnapError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.POLICY, hint=hint, context=context)


class FetchError(EnvsnapError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.FETCH, hint=hint, context=context)


class IntegrityError(EnvsnapError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.INTEGRITY, hint=hint, context=context)


class ParseError(EnvsnapError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.PARSE, hint=hint, context=context)


class NotFoundError(EnvsnapError):
    """Raised when a requested or transitively required package is absent."""

    def __init__(
        self,
        name: str,
        *,
        message: str | None = None,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        self.name = name
        super().__init__(
            message or f"Package `{name}` was not found in the package index.",
            code=ErrorCode.NOT_FOUND,
            hint=hint,
            context={"package": name, **dict(context or {})},
        )


class ConflictError(EnvsnapError):
    """Raised when one package name is required at more than one version."""

    def __init__(
        self,
        name: str,
        versions: tuple[str, ...],
        *,
        message: str | None = None,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        self.name = name
        self.versions = versions
        super().__init__(
            message or f"Conflicting versions of `{name}`: {', '.join(versions)}.",
            code=ErrorCode.CONFLICT,
            hint=hint,
            context={"package": name, "versions": ", ".join(versions), **dict(context or {})},
        )


class OperationTimeoutError(EnvsnapError, builtins.TimeoutError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.TIMEOUT, hint=hint, context=context)


class CancelledError(EnvsnapError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CANCELLED, hint=hint, context=context)


class WriteError(EnvsnapError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.WRITE, hint=hint, context=context)


class ManifestError(EnvsnapError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.MANIFEST, hint=hint, context=context)


class DescriptorError(EnvsnapError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.DESCRIPTOR, hint=hint, context=context)


__all__ = [
    "CancelledError",
    "ConflictError",
    "DescriptorError",
    "EnvsnapError",
    "ErrorCode",
    "FetchError",
    "IntegrityError",
    "ManifestError",
    "NotFoundError",
    "OperationTimeoutError",
    "ParseError",
    "PolicyError",
    "ValidationError",
    "WriteError",
]
