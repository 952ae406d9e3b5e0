# kpc_assistant/modules/router/classifier.py
import logging
import time
from typing import Optional

from kpc_assistant.core.capability import CapabilityCall
from kpc_assistant.core.capability_registry import CapabilityCatalog
from kpc_assistant.core.config import AssistantSettings
from kpc_assistant.core.errors import AssistantError, BackendUnavailableError
from kpc_assistant.modules.chat.prompts import build_classify_prompt
from kpc_assistant.modules.router.call_parser import parse_capability_call
from kpc_assistant.modules.router.rules import rule_based_call

logger = logging.getLogger(__name__)


class IntentClassifier:
    """
    Decides whether an utterance needs a capability call, and which one.

    With a reachable backend the model is asked first; its answer is accepted
    only if it names a known capability with all required arguments. Every
    other outcome (backend down, request failed, "NONE", garbage) falls back
    to the keyword rules.
    """

    def __init__(self, catalog: CapabilityCatalog, backend, settings: Optional[AssistantSettings] = None):
        self.catalog = catalog
        self.backend = backend
        self.settings = settings or AssistantSettings()

    def classify(self, utterance: str) -> Optional[CapabilityCall]:
        start = time.monotonic()
        call = None
        source = "rules"

        if self.settings.llm_classifier_enabled and self.backend.check_available():
            call = self._classify_with_backend(utterance)
            if call is not None:
                source = "backend"

        if call is None:
            call = self._classify_with_rules(utterance)

        logger.info(
            "Classified via %s in %.3fs: %s",
            source,
            time.monotonic() - start,
            f"{call.name} {call.arguments}" if call else "no capability",
        )
        return call

    def _classify_with_backend(self, utterance: str) -> Optional[CapabilityCall]:
        prompt = build_classify_prompt(self.catalog.describe_all(), utterance)
        try:
            raw = self.backend.generate(prompt, label="classify")
        except BackendUnavailableError as exc:
            logger.warning("Backend went away during classification: %s", exc)
            return None
        except (AssistantError, TimeoutError) as exc:
            logger.warning("Backend classification failed, using rules: %s", exc)
            return None

        call = parse_capability_call(raw, self.catalog)
        if call is None:
            return None
        return self._validated(call)

    def _classify_with_rules(self, utterance: str) -> Optional[CapabilityCall]:
        call = rule_based_call(utterance)
        if call is None:
            return None
        return self._validated(call)

    def _validated(self, call: CapabilityCall) -> Optional[CapabilityCall]:
        descriptor = self.catalog.resolve(call.name)
        if descriptor is None:
            logger.debug("Discarding call to unknown capability %r", call.name)
            return None
        ok, missing = descriptor.validate_arguments(call.arguments)
        if not ok:
            logger.debug("Discarding %s call, missing %s", descriptor.name, ", ".join(missing))
            return None
        return CapabilityCall(name=descriptor.name, arguments=dict(call.arguments))
