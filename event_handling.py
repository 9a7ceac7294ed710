from __future__ import annotations

# python imports:
from abc import ABCMeta, abstractmethod
import contextlib
import logging
import trio # pip install trio
from typing import Iterator, Optional as Opt, Sequence as Seq, Type

# torctl imports:
from base_proto import Event, SendDataEvent, Closed
from torctl_config import Config
import torctl_proto as proto
from transport import AsyncTransport, Dialer
from util import b2s

logger = logging.getLogger ( __name__ )
comms_logger = logger.getChild ( 'comms' )


@contextlib.contextmanager
def close_if_oserror() -> Iterator[None]:
	try:
		yield
	except ( OSError, trio.BrokenResourceError, trio.ClosedResourceError ) as e:
		raise Closed ( repr ( e ) ) from e


def log_comms ( direction: str, lines: Seq[str] ) -> None:
	for line in lines:
		comms_logger.debug ( f'{direction} {line}' )


class AsyncEventHandler:
	transport: Opt[AsyncTransport] = None
	config: Config

	async def on_SendDataEvent ( self, event: SendDataEvent ) -> None:
		log = logger.getChild ( 'AsyncEventHandler.on_SendDataEvent' )
		if self.transport is None:
			raise Closed ( 'not connected' )
		for chunk in event.chunks:
			if self.config.comms_logging:
				log_comms ( '<<', b2s ( chunk, 'utf-8', 'replace' ).split ( '\r\n' )[:-1] )
			with trio.move_on_after ( self.config.write_timeout ):
				await self.transport.write ( chunk )
				continue
			log.warning ( 'timeout writing to transport' )
			raise TimeoutError ( f'{type(self).__module__}.{type(self).__name__} timeout waiting to write {bytes(chunk)=}' )

	async def _on_event ( self, event: Event ) -> None:
		#log = logger.getChild ( 'AsyncEventHandler._on_event' )
		func = getattr ( self, f'on_{type(event).__name__}' )
		await func ( event )


class AsyncClient ( AsyncEventHandler, metaclass = ABCMeta ):
	'''
	Owns one connection, the reply parser bound to it and the reader task
	that drives the parser.

	Only one request may be outstanding at a time: replies carry no tag, so
	the next complete reply off the wire belongs to whoever is waiting. A
	second concurrent request fails fast with trio.BusyResourceError.

	When the server hangs up between requests the reader stops and the
	session counts as disconnected: is_connected() turns False, the next
	connect() dials again and the next request() closes the session and
	raises Closed.
	'''
	protocls: Type[proto.Client] = proto.Client
	proto: Opt[proto.Client] = None
	authenticated: bool = False
	_lost: bool = False # the reader saw the connection end

	def __init__ ( self,
		nursery: trio.Nursery,
		network: str,
		address: str,
		*,
		dialer: Dialer,
		config: Opt[Config] = None,
	) -> None:
		self.nursery = nursery
		self.network = network
		self.address = address
		self.dialer = dialer
		self.config = config if config is not None else Config()
		self._busy = False
		self._orphans = 0 # abandoned requests whose replies are still owed
		self._inbox: Opt[trio.MemoryReceiveChannel[proto.ResponseBuffer]] = None
		self._reader_scope: Opt[trio.CancelScope] = None

	def is_connected ( self ) -> bool:
		return self.transport is not None and not self._lost

	def is_authenticated ( self ) -> bool:
		return self.authenticated and self.is_connected()

	async def connect ( self ) -> None:
		log = logger.getChild ( 'AsyncClient.connect' )
		if self.is_connected():
			log.info ( 'attempt to dial when already connected, ignoring' )
			return
		if self._lost:
			log.info ( 'previous connection was lost, cleaning up' )
			await self.close()

		log.info ( f'dialing {self.network} {self.address}' )
		transport = await self.dialer ( self.network, self.address )
		log.info ( 'connection established' )

		self.transport = transport
		self.proto = self.protocls()
		self.authenticated = False
		self._orphans = 0
		inbox_tx, self._inbox = trio.open_memory_channel ( 1 )
		self._reader_scope = trio.CancelScope()
		self.nursery.start_soon ( self._reader, transport, self.proto, inbox_tx, self._reader_scope )

		try:
			await self._on_connect()
		except BaseException:
			log.info ( 'connect failed, closing' )
			await self.close()
			raise

	@abstractmethod
	async def _on_connect ( self ) -> None:
		''' capability discovery and authentication, run once per connect() '''
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._on_connect()' )

	async def close ( self ) -> None:
		log = logger.getChild ( 'AsyncClient.close' )
		if self.transport is None:
			return
		transport, self.transport = self.transport, None
		self._lost = False
		self.authenticated = False
		self.proto = None
		if self._reader_scope is not None:
			self._reader_scope.cancel()
			self._reader_scope = None
		if self._inbox is not None:
			self._inbox.close()
			self._inbox = None
		log.info ( 'closing connection' )
		await transport.close()

	async def _reader ( self,
		transport: AsyncTransport,
		parser: proto.Client,
		inbox: trio.MemorySendChannel[proto.ResponseBuffer],
		scope: trio.CancelScope,
	) -> None:
		log = logger.getChild ( 'AsyncClient._reader' )
		with scope:
			async with inbox:
				try:
					while True:
						with close_if_oserror():
							data = await transport.read()
						for event in parser.receive ( data ):
							assert isinstance ( event, proto.ReplyEvent ), f'unexpected {event=}'
							if self.config.comms_logging:
								log_comms ( '>>', event.raw )
							with close_if_oserror():
								await inbox.send ( event.buffer )
				except Closed as e:
					log.debug ( f'connection closed with reason: {e.args[0]!r}' )
					if self.transport is transport:
						self._lost = True
		log.debug ( 'reader stopped' )

	async def request ( self, request: proto.Request[proto.ResponseType] ) -> proto.ResponseBuffer:
		log = logger.getChild ( 'AsyncClient.request' )
		if self._busy:
			raise trio.BusyResourceError ( 'another request is already waiting for its reply' )
		if self._lost:
			log.info ( 'server hung up since the last request' )
			await self.close()
		if self.transport is None or self.proto is None or self._inbox is None:
			raise Closed ( 'not connected' )
		inbox = self._inbox
		self._busy = True
		owed = False # the command is on the wire and its reply hasn't been taken
		try:
			try:
				with close_if_oserror():
					for event in self.proto.send ( request ):
						await self._on_event ( event )
			except BaseException as e:
				# a partial command leaves the stream out of step with the replies
				log.warning ( f'failed to send {request!r}: {e!r}' )
				with trio.CancelScope ( shield = True ):
					await self.close()
				raise
			owed = True

			with trio.move_on_after ( request.timeout ):
				while True:
					try:
						buffer = await inbox.receive()
					except trio.EndOfChannel:
						log.warning ( 'connection lost while waiting for reply' )
						await self.close()
						raise Closed ( 'connection lost' ) from None
					except trio.ClosedResourceError:
						raise Closed ( 'closed while waiting for reply' ) from None
					if self._orphans:
						self._orphans -= 1
						log.warning ( f'discarding orphaned reply: {buffer!r}' )
						continue
					owed = False
					return buffer

			log.warning ( f'timeout waiting for reply to {request!r}' )
			raise TimeoutError ( f'timeout waiting for reply to {request!r} after {request.timeout}s' )
		finally:
			# timed out or cancelled by the caller, either way the reply is still coming
			if owed and self.is_connected() and self.config.discard_late_replies:
				self._orphans += 1
			self._busy = False

	async def _request ( self, request: proto.Request[proto.ResponseType] ) -> proto.ResponseType:
		buffer = await self.request ( request )
		return request.responsecls ( request, buffer )
