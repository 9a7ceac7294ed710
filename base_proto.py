from __future__ import annotations

# python imports:
from abc import ABCMeta, abstractmethod
import logging
from typing import Iterator, Sequence as Seq

# torctl imports:
from util import bytes_types, BYTES

logger = logging.getLogger ( __name__ )


class Event ( Exception ):
	def go ( self ) -> Iterator[Event]:
		yield self

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}()'


class Closed ( Exception ):
	def __init__ ( self, reason: str = '' ) -> None:
		super().__init__ ( reason or '(none given)' )


class SendDataEvent ( Event ):

	def __init__ ( self, *chunks: bytes ) -> None:
		self.chunks: Seq[bytes] = chunks

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(chunks={self.chunks!r})'


class Protocol ( metaclass = ABCMeta ):
	'''
	Line framer: turns an unbounded byte stream into CRLF terminated lines.

	Lines that end in a bare LF are logged and dropped, the stream itself is
	still trusted. Feeding b'' signals EOF and raises Closed.
	'''
	_buf: bytes = b''
	_overflow: bool = False # discarding an over-long line up to its next LF
	_MAXLINE: int

	def receive ( self, data: bytes ) -> Iterator[Event]:
		log = logger.getChild ( 'Protocol.receive' )
		assert isinstance ( data, bytes_types ), f'invalid {data=}'
		if not data: # EOF indicator
			if self._buf:
				buf, self._buf = self._buf, b''
				log.warning ( f'protocol error, no line ending before EOF: {buf!r}' )
			raise Closed ( 'EOF' )
		self._buf += data
		start = 0
		end = 0
		try:
			while ( end := ( self._buf.find ( b'\n', start ) + 1 ) ):
				line = memoryview ( self._buf )[start:end]
				start = end
				if self._overflow:
					self._overflow = False
					continue
				if bytes ( line[-2:] ) != b'\r\n':
					log.warning ( f'protocol error, no line ending: {bytes(line)!r}' )
					continue
				yield from self._receive_line ( line[:-2] )
		finally:
			if start:
				self._buf = self._buf[start:]
		if len ( self._buf ) >= self._MAXLINE:
			log.warning ( f'maximum line length exceeded, discarding {len(self._buf)} bytes' )
			self._buf = b''
			self._overflow = True

	@abstractmethod
	def _receive_line ( self, line: BYTES ) -> Iterator[Event]:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._receive_line()' )
