# python imports:
from abc import ABCMeta, abstractmethod
import logging
from typing import Awaitable, Callable

# torctl imports:
from util import BYTES

logger = logging.getLogger ( __name__ )


class AsyncTransport ( metaclass = ABCMeta ):
	@abstractmethod
	async def read ( self ) -> bytes:
		''' returns b'' on EOF '''
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.read()' )

	@abstractmethod
	async def write ( self, data: BYTES ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.write()' )

	@abstractmethod
	async def close ( self ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.close()' )


# ( network, address ) -> connected transport
Dialer = Callable[[str,str],Awaitable[AsyncTransport]]
