"""
Check Orchestrator for the NameLens core.

Fans one candidate name out over a profile: every TLD against the domain
checker, then every registry, then every handle, strictly in that order and
one target at a time. Missing or unsupported checkers and provider failures
are handled by policy:

- default: unsupported targets are skipped and provider errors become an
  `error` result, so one failing provider never hides the others
- `include_unsupported=True`: unsupported targets yield an `unsupported`
  result and provider errors propagate, aborting the call
"""

from typing import Optional

from .checker import Checker
from .enums import CHECK_TYPE_KEYS, Availability, CheckType
from .exceptions import ValidationError
from .models import CheckResult, Clock, Profile, Provenance, normalize_tld, utc_now
from .structured_logger import ComponentLogging, StructuredLogger

ORCHESTRATOR_SOURCE = "orchestrator"


class Orchestrator(ComponentLogging):
    """Coordinates checks across the configured checkers."""

    _component = "Orchestrator"

    def __init__(
        self,
        checkers: Optional[dict[CheckType, Checker]] = None,
        registry_checkers: Optional[dict[str, Checker]] = None,
        handle_checkers: Optional[dict[str, Checker]] = None,
        include_unsupported: bool = False,
        clock: Optional[Clock] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            checkers: Checkers by type; the DOMAIN entry serves profile TLDs
            registry_checkers: Checkers for profile registries, keyed like "npm"
            handle_checkers: Checkers for profile handles, keyed like "github"
            include_unsupported: Report unsupported targets and propagate
                                 provider errors instead of absorbing them
            clock: Time source for synthetic results
            logger: Optional structured logger
        """
        self.checkers: dict[CheckType, Checker] = dict(checkers or {})
        self.registry_checkers: dict[str, Checker] = dict(registry_checkers or {})
        self.handle_checkers: dict[str, Checker] = dict(handle_checkers or {})
        self.include_unsupported = include_unsupported
        self._clock = clock or utc_now
        self._logger = logger

    async def check(self, name: str, profile: Profile) -> list[CheckResult]:
        """
        Run every target of the profile for `name`.

        Returns:
            One result per evaluated target, in profile order

        Raises:
            ValidationError: If the name is blank or the profile is empty
            Exception: Whatever a checker raised, in strict mode
        """
        base_name = (name or "").strip()
        if not base_name:
            raise ValidationError(
                code="empty_name",
                message="name is required",
                details={},
            )
        if profile is None or profile.is_empty():
            raise ValidationError(
                code="empty_profile",
                message="profile has no TLDs, registries or handles",
                details={"profile": getattr(profile, "name", None)},
            )

        results: list[CheckResult] = []

        domain_checker = self.checkers.get(CheckType.DOMAIN)
        for tld in profile.tlds:
            normalized = normalize_tld(tld)
            if not normalized:
                continue
            result = await self._run_checker(
                domain_checker,
                CheckType.DOMAIN,
                f"{base_name}.{normalized}",
                tld=normalized,
            )
            if result is not None:
                results.append(result)

        for group, keys in (
            (self.registry_checkers, profile.registries),
            (self.handle_checkers, profile.handles),
        ):
            for raw_key in keys:
                key = (raw_key or "").strip().lower()
                if not key:
                    continue
                check_type = CHECK_TYPE_KEYS.get(key)
                if check_type is None:
                    self._log_debug("Unknown profile key dropped", {"key": key})
                    continue
                result = await self._run_checker(group.get(key), check_type, base_name)
                if result is not None:
                    results.append(result)

        self._log_info(
            "Check completed",
            {"name": base_name, "profile": profile.name, "results": len(results)},
        )
        return results

    async def _run_checker(
        self,
        checker: Optional[Checker],
        check_type: CheckType,
        name: str,
        tld: str = "",
    ) -> Optional[CheckResult]:
        if checker is None:
            if not self.include_unsupported:
                return None
            return self._synthetic_result(
                name, check_type, tld, Availability.UNSUPPORTED, "checker not configured"
            )

        if not checker.supports_name(name):
            if not self.include_unsupported:
                return None
            return self._synthetic_result(
                name, check_type, tld, Availability.UNSUPPORTED, "checker does not support name"
            )

        try:
            return await checker.check(name)
        except Exception as e:
            if self.include_unsupported:
                raise
            self._log_error(
                "Checker failed",
                e,
                {"name": name, "check_type": check_type.value},
            )
            return self._synthetic_result(name, check_type, tld, Availability.ERROR, str(e))

    def _synthetic_result(
        self,
        name: str,
        check_type: CheckType,
        tld: str,
        available: Availability,
        message: str,
    ) -> CheckResult:
        now = self._clock()
        return CheckResult(
            name=name,
            check_type=check_type,
            tld=tld,
            available=available,
            message=message,
            provenance=Provenance(
                requested_at=now,
                resolved_at=now,
                source=ORCHESTRATOR_SOURCE,
            ),
        )
