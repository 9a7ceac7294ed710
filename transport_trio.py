from __future__ import annotations

# python imports:
import logging
import trio # pip install trio
from typing import Type

# torctl imports:
from transport import AsyncTransport
from util import BYTES

logger = logging.getLogger ( __name__ )


class TrioTransport ( AsyncTransport ):
	happy_eyeballs_delay: float = 0.25 # this is the same as trio's default circa version 0.16.0
	stream: trio.abc.Stream

	def __init__ ( self, stream: trio.abc.Stream ) -> None:
		self.stream = stream

	@classmethod
	async def dial ( cls: Type[TrioTransport], network: str, address: str ) -> TrioTransport:
		log = logger.getChild ( 'TrioTransport.dial' )
		stream: trio.abc.Stream
		if network == 'tcp':
			hostname, sep, port = address.rpartition ( ':' )
			if not sep or not port.isdigit():
				raise ValueError ( f'invalid tcp {address=}, expected host:port' )
			stream = await trio.open_tcp_stream ( hostname.strip ( '[]' ), int ( port ),
				happy_eyeballs_delay = cls.happy_eyeballs_delay,
			)
		elif network == 'unix':
			stream = await trio.open_unix_socket ( address )
		else:
			raise ValueError ( f'unsupported {network=}' )
		log.debug ( f'connected to {network} {address}' )
		return cls ( stream )

	async def read ( self ) -> bytes:
		#log = logger.getChild ( 'TrioTransport.read' )
		return await self.stream.receive_some()

	async def write ( self, data: BYTES ) -> None:
		#log = logger.getChild ( 'TrioTransport.write' )
		await self.stream.send_all ( data )

	async def close ( self ) -> None:
		#log = logger.getChild ( 'TrioTransport.close' )
		with trio.move_on_after ( 0.05 ):
			await self.stream.aclose()


dial = TrioTransport.dial
