# python imports:
import logging
from pathlib import Path
import sys
from typing import Iterator, List
import unittest

if __name__=='__main__': # pragma: no cover
	sys.path.append ( str ( Path ( __file__ ).parent.parent.absolute() ) )

# torctl imports:
from _triotesting import quiet_logging
import base_proto
from util import BYTES

logger = logging.getLogger ( __name__ )


def IsSendData ( evt: base_proto.Event ) -> base_proto.SendDataEvent:
	assert isinstance ( evt, base_proto.SendDataEvent )
	return evt


class EchoProtocol ( base_proto.Protocol ):
	_MAXLINE = 42
	def _receive_line ( self, line: BYTES ) -> Iterator[base_proto.Event]:
		yield base_proto.SendDataEvent ( bytes ( line ) )


def lines ( tp: base_proto.Protocol, data: bytes ) -> List[bytes]:
	return [ b''.join ( IsSendData ( evt ).chunks ) for evt in tp.receive ( data ) ]


class Tests ( unittest.TestCase ):
	def test_misc ( self ) -> None:
		test = self

		class BadProtocol ( base_proto.Protocol ):
			def _receive_line ( self, line: BYTES ) -> Iterator[base_proto.Event]:
				return super()._receive_line ( line )
		bp = BadProtocol()
		with test.assertRaises ( NotImplementedError ):
			bp._receive_line ( b'' )

		test.assertEqual ( repr ( base_proto.Event() ), 'base_proto.Event()' )
		test.assertEqual (
			repr ( base_proto.SendDataEvent ( b'foo' ) ),
			"base_proto.SendDataEvent(chunks=(b'foo',))",
		)
		test.assertEqual ( repr ( base_proto.Closed() ), "Closed('(none given)')" )

	def test_framing ( self ) -> None:
		test = self
		tp = EchoProtocol()
		test.assertEqual ( lines ( tp, b'250 OK\r' ), [] )
		test.assertEqual ( lines ( tp, b'\n250-ba' ), [ b'250 OK' ] )
		test.assertEqual ( lines ( tp, b'r\r\n250 baz\r\n' ), [ b'250-bar', b'250 baz' ] )

		# a bare LF is a framing error: the line is dropped, the stream goes on
		with quiet_logging():
			test.assertEqual ( lines ( tp, b'250 no cr\n250 OK\r\n' ), [ b'250 OK' ] )

		# EOF with a dangling fragment drops the fragment and closes
		test.assertEqual ( lines ( tp, b'250 trunc' ), [] )
		with quiet_logging():
			with test.assertRaises ( base_proto.Closed ):
				try:
					lines ( tp, b'' )
				except base_proto.Closed as e:
					test.assertEqual ( e.args[0], 'EOF' )
					raise
		test.assertEqual ( tp._buf, b'' )

	def test_overflow ( self ) -> None:
		test = self
		tp = EchoProtocol()
		with quiet_logging():
			test.assertEqual ( lines ( tp, b'X' * tp._MAXLINE ), [] )
		test.assertEqual ( tp._buf, b'' )
		# the rest of the over-long line is skipped, the next line survives
		test.assertEqual ( lines ( tp, b'XXXX\r\n250 OK\r\n' ), [ b'250 OK' ] )

if __name__ == '__main__':
	logging.basicConfig ( level = logging.DEBUG )
	unittest.main()
