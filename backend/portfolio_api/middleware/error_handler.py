"""
Portfolio API — Error Handler Middleware
=========================================

What:  Installs the fault translator used for the rest of the request.
How:   Activates itself (a FaultTranslator configured for the environment)
       in the request's context; the chain and the Application Driver render
       every later fault through it. On first use it also escalates
       RuntimeWarning to an exception process-wide, so warnings raised by
       handlers surface as 500 responses instead of being printed and ignored.
When:  First in the chain. It never produces a response itself.
"""

import logging
import warnings
from typing import Optional

from portfolio_api.config import Settings
from portfolio_api.core.envelope import ApiResponse, RequestEnvelope
from portfolio_api.core.errors import FaultTranslator, activate_translator
from portfolio_api.core.middleware import Middleware

logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(FaultTranslator, Middleware):
    def __init__(self, expose_details: bool = False, escalate_warnings: bool = True):
        super().__init__(expose_details=expose_details)
        self.escalate_warnings = escalate_warnings
        self._installed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "ErrorHandlerMiddleware":
        return cls(expose_details=settings.expose_error_details)

    async def handle(self, request: RequestEnvelope) -> Optional[ApiResponse]:
        if not self._installed:
            self._install()
        activate_translator(self)
        return None

    def _install(self) -> None:
        if self.escalate_warnings:
            warnings.simplefilter("error", RuntimeWarning)
            logger.debug("RuntimeWarning escalated to error")
        self._installed = True
