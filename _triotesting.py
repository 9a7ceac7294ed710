from __future__ import annotations

# python imports:
import contextlib
import logging
import trio # pip install trio
import trio.testing
from typing import Awaitable, Callable, Iterator, List, Tuple

# torctl imports:
from transport_trio import TrioTransport
from util import b2s

logger = logging.getLogger ( __name__ )


@contextlib.contextmanager
def quiet_logging ( quiet: bool = True ) -> Iterator[None]:
	try:
		if quiet:
			logging.disable ( logging.CRITICAL )
		yield None
	finally:
		if quiet:
			logging.disable ( logging.NOTSET )


class FakeServer:
	''' the far end of an in-memory control connection, scripted by a test '''

	def __init__ ( self, stream: trio.abc.Stream ) -> None:
		self.stream = stream
		self._buf = b''
		self.received: List[str] = []

	async def readline ( self ) -> str:
		while b'\r\n' not in self._buf:
			data = await self.stream.receive_some()
			if not data:
				raise EOFError ( 'client closed connection' )
			self._buf += data
		line, _, self._buf = self._buf.partition ( b'\r\n' )
		text = b2s ( line, 'utf-8' )
		self.received.append ( text )
		return text

	async def send ( self, data: bytes ) -> None:
		await self.stream.send_all ( data )

	async def aclose ( self ) -> None:
		await self.stream.aclose()


ServerScript = Callable[[FakeServer],Awaitable[None]]
StreamPair = Callable[[],Tuple[trio.abc.Stream,trio.abc.Stream]]


class FakeDialer:
	'''
	Dialer that hands out in-memory connections instead of sockets. Each dial
	runs `script` against the server side of a fresh stream pair. Pass
	trio.testing.lockstep_stream_pair for a server that can stall writes.
	'''
	def __init__ ( self,
		nursery: trio.Nursery,
		script: ServerScript,
		stream_pair: StreamPair = trio.testing.memory_stream_pair,
	) -> None:
		self.nursery = nursery
		self.script = script
		self.stream_pair = stream_pair
		self.dialed: List[str] = []
		self.servers: List[FakeServer] = []

	async def __call__ ( self, network: str, address: str ) -> TrioTransport:
		self.dialed.append ( f'{network} {address}' )
		thing1, thing2 = self.stream_pair()
		server = FakeServer ( thing2 )
		self.servers.append ( server )
		self.nursery.start_soon ( self.script, server )
		return TrioTransport ( thing1 )


PROTOCOLINFO_NULL = (
	b'250-PROTOCOLINFO 1\r\n'
	b'250-AUTH METHODS=NULL\r\n'
	b'250-VERSION Tor="0.4.8.9"\r\n'
	b'250 OK\r\n'
)


async def accept_null ( server: FakeServer ) -> None:
	''' PROTOCOLINFO + open AUTHENTICATE, the handshake every session starts with '''
	assert await server.readline() == 'PROTOCOLINFO'
	await server.send ( PROTOCOLINFO_NULL )
	assert await server.readline() == 'AUTHENTICATE'
	await server.send ( b'250 OK\r\n' )
