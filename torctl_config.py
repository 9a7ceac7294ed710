from __future__ import annotations

# python imports:
import logging
import os
from typing import Any, Mapping, NamedTuple, Optional as Opt, Tuple

logger = logging.getLogger ( __name__ )

ENV_LOG_COMMS = 'TORCTL_LOG_COMMS'


class Config ( NamedTuple ):
	comms_logging: bool = False # log raw wire traffic through event_handling.comms
	password: str = '' # for HASHEDPASSWORD authentication
	auth_preference: Tuple[str,...] = ( 'COOKIE', 'HASHEDPASSWORD', 'NULL' )
	discard_late_replies: bool = True
	write_timeout: float = 5.0

	@classmethod
	def from_env ( cls, environ: Opt[Mapping[str,str]] = None, **overrides: Any ) -> Config:
		log = logger.getChild ( 'Config.from_env' )
		if environ is None:
			environ = os.environ
		if 'comms_logging' not in overrides and environ.get ( ENV_LOG_COMMS ):
			log.debug ( f'{ENV_LOG_COMMS} set, enabling comms logging' )
			overrides['comms_logging'] = True
		return cls ( **overrides )
