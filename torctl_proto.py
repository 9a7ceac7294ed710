#region PROLOGUE --------------------------------------------------------------
from __future__ import annotations

# python imports:
import logging
import re
from typing import (
	Dict, Generic, Iterable, Iterator, List, Mapping, NamedTuple,
	Optional as Opt, Sequence as Seq, Tuple, Type, TypeVar,
)

import packaging.version # pip install packaging

# torctl imports:
from base_proto import Event, SendDataEvent, Protocol
from util import BYTES, b2s, s2b

__version__ = packaging.version.parse ( '0.1.0' )

logger = logging.getLogger ( __name__ )


_r_status = re.compile ( r'[0-9]{3}' )
_r_variable = re.compile ( r'([/\w]+)=(([,\w]+)|("(?:\\.|[^"\\])*"))' )
_r_escape = re.compile ( r'\\(.)' )

DEFAULT_TIMEOUT = 5.0 # seconds

COMMAND_SETCONF = 'SETCONF'
COMMAND_RESETCONF = 'RESETCONF'
COMMAND_GETCONF = 'GETCONF'
COMMAND_SETEVENTS = 'SETEVENTS'
COMMAND_AUTHENTICATE = 'AUTHENTICATE'
COMMAND_SAVECONF = 'SAVECONF'
COMMAND_SIGNAL = 'SIGNAL'
COMMAND_GETINFO = 'GETINFO'
COMMAND_PROTOCOLINFO = 'PROTOCOLINFO'
COMMAND_DROPGUARDS = 'DROPGUARDS'
COMMAND_ADD_ONION = 'ADD_ONION'
COMMAND_DEL_ONION = 'DEL_ONION'

SIGNAL_RELOAD = 'RELOAD'
SIGNAL_SHUTDOWN = 'SHUTDOWN'
SIGNAL_DUMP = 'DUMP'
SIGNAL_DEBUG = 'DEBUG'
SIGNAL_HALT = 'HALT'
SIGNAL_HUP = 'HUP'
SIGNAL_INT = 'INT'
SIGNAL_USR1 = 'USR1'
SIGNAL_USR2 = 'USR2'
SIGNAL_TERM = 'TERM'
SIGNAL_NEWNYM = 'NEWNYM'
SIGNAL_CLEARDNSCACHE = 'CLEARDNSCACHE'
SIGNAL_HEARTBEAT = 'HEARTBEAT'

ONION_KEY_TYPE_NEW = 'NEW'
ONION_KEY_TYPE_RSA1024 = 'RSA1024'
ONION_KEY_BLOB_BEST = 'BEST'
ONION_KEY_BLOB_RSA1024 = 'RSA1024'
ADD_ONION_FLAG_DISCARD_PK = 'DiscardPK'
ADD_ONION_FLAG_DETACH = 'Detach'

#endregion
#region ERRORS ----------------------------------------------------------------

class AuthError ( Exception ):
	pass


class NoAuthMethod ( AuthError ):
	def __init__ ( self, advertised: Iterable[str], preference: Iterable[str] ) -> None:
		self.advertised = tuple ( advertised )
		self.preference = tuple ( preference )
		super().__init__ ( f'no compatible authentication method (advertised={self.advertised!r} preference={self.preference!r})' )


class AuthFailed ( AuthError ):
	def __init__ ( self, method: str, response: Response ) -> None:
		self.method = method
		self.response = response
		super().__init__ ( f'{method} authentication failed: {response.status} {response.status_text}' )

#endregion
#region WIRE TYPES ------------------------------------------------------------

class MidReplyLine ( NamedTuple ):
	status: int
	text: str


class DataReplyLine ( NamedTuple ):
	status: int
	text: str
	lines: Tuple[str,...]

	@property
	def body ( self ) -> str:
		return '\n'.join ( self.lines )


class EndReplyLine ( NamedTuple ):
	status: int
	text: str


UNPARSED_STATUS = -1


class LineBuffer ( tuple ):
	''' outbound request lines, normalized to CRLF on the way out '''

	def __new__ ( cls, lines: Iterable[str] = () ) -> LineBuffer:
		return super().__new__ ( cls, lines )

	def normalize ( self ) -> bytes:
		chunks: List[bytes] = []
		for line in self:
			line = line.replace ( '\r\n', '\n' ).replace ( '\n', '\r\n' )
			if not line.endswith ( '\r\n' ):
				line += '\r\n'
			chunks.append ( s2b ( line, 'utf-8' ) )
		return b''.join ( chunks )


def variable_map ( text: str ) -> Dict[str,str]:
	'''
	Extract KEY=VALUE and KEY="quoted value" pairs from a reply line.

	>>> variable_map ( 'METHODS=COOKIE,NULL COOKIEFILE="/run/tor/control.authcookie"' )
	{'METHODS': 'COOKIE,NULL', 'COOKIEFILE': '/run/tor/control.authcookie'}
	'''
	results: Dict[str,str] = {}
	for m in _r_variable.finditer ( text ):
		key, value = m.group ( 1 ), m.group ( 2 )
		if m.group ( 4 ):
			value = _r_escape.sub ( r'\1', value[1:-1] )
		results[key] = value
	return results


class ResponseBuffer:
	'''
	One logical reply: any number of mid-reply lines and data blocks followed
	by exactly one end-reply line. The parser only hands out complete buffers.
	'''
	end_line: Opt[EndReplyLine] = None

	def __init__ ( self ) -> None:
		self.mid_lines: List[MidReplyLine] = []
		self.data_lines: List[DataReplyLine] = []

	@property
	def status ( self ) -> int:
		return self.end_line.status if self.end_line is not None else UNPARSED_STATUS

	@property
	def status_text ( self ) -> str:
		return self.end_line.text if self.end_line is not None else ''

	def find_mid ( self, prefix: str ) -> str:
		for line in self.mid_lines:
			if line.text.startswith ( prefix ):
				return line.text
		return ''

	def find_data ( self, prefix: str ) -> str:
		for line in self.data_lines:
			if line.text.startswith ( prefix ):
				return line.body
		return ''

	def value ( self ) -> str:
		if self.mid_lines:
			return self.mid_lines[0].text.partition ( '=' )[2]
		if self.data_lines:
			return self.data_lines[0].body
		return ''

	def value_of ( self, key: str ) -> str:
		text = self.find_mid ( key )
		if text:
			prefix = f'{key}='
			return text[len(prefix):] if text.startswith ( prefix ) else text
		return self.find_data ( key )

	def values ( self ) -> Dict[str,str]:
		results: Dict[str,str] = {}
		for mid in self.mid_lines:
			key, _, value = mid.text.partition ( '=' )
			results[key] = value
		for data in self.data_lines:
			results[data.text.rstrip ( '=' )] = data.body
		return results

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(mid_lines={self.mid_lines!r}, data_lines={self.data_lines!r}, end_line={self.end_line!r})'

#endregion
#region RESPONSES -------------------------------------------------------------

def is_success_status ( status: int ) -> bool:
	# 3yz, 4yz and 5yz are failures; 2yz, 6yz (async) and anything unparsed are not
	return not ( 300 <= status <= 599 )


class Response:
	def __init__ ( self, request: Request[Response], buffer: ResponseBuffer ) -> None:
		self.request = request
		self.buffer = buffer

	@property
	def status ( self ) -> int:
		return self.buffer.status

	@property
	def status_text ( self ) -> str:
		return self.buffer.status_text

	def is_success ( self ) -> bool:
		return is_success_status ( self.status )

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}({self.status!r}, {self.status_text!r})'


ResponseType = TypeVar ( 'ResponseType', bound = Response )


class ProtocolInfoResponse ( Response ):
	def protocol ( self ) -> int:
		_, _, version = self.buffer.find_mid ( 'PROTOCOLINFO' ).partition ( ' ' )
		try:
			return int ( version )
		except ValueError:
			return UNPARSED_STATUS

	def auth ( self ) -> Dict[str,str]:
		return variable_map ( self.buffer.find_mid ( 'AUTH' )[len('AUTH'):] )

	def auth_methods ( self ) -> List[str]:
		methods = self.auth().get ( 'METHODS', '' )
		return [ method for method in methods.split ( ',' ) if method ]

	def auth_cookie_file ( self ) -> str:
		return self.auth().get ( 'COOKIEFILE', '' )

	def version ( self ) -> Dict[str,str]:
		return variable_map ( self.buffer.find_mid ( 'VERSION' )[len('VERSION'):] )


class GetInfoResponse ( Response ):
	def value ( self ) -> str:
		return self.buffer.value()

	def value_of ( self, key: str ) -> str:
		return self.buffer.value_of ( key )

	def values ( self ) -> Dict[str,str]:
		return self.buffer.values()


class GetConfResponse ( Response ):
	# a single requested key comes back on the end-reply line
	def value ( self ) -> str:
		return self.status_text.partition ( '=' )[2]

	def value_of ( self, key: str ) -> str:
		for text in self._texts():
			k, _, v = text.partition ( '=' )
			if k == key:
				return v
		return ''

	def values ( self ) -> Dict[str,str]:
		results: Dict[str,str] = {}
		for text in self._texts():
			k, _, v = text.partition ( '=' )
			results[k] = v
		return results

	def _texts ( self ) -> Iterator[str]:
		for mid in self.buffer.mid_lines:
			yield mid.text
		yield self.status_text


class AddOnionResponse ( Response ):
	def service_id ( self ) -> str:
		return self.buffer.find_mid ( 'ServiceID=' )[len('ServiceID='):]

	def private_key ( self ) -> str:
		return self.buffer.find_mid ( 'PrivateKey=' )[len('PrivateKey='):]

#endregion
#region REQUESTS --------------------------------------------------------------

class Request ( Generic[ResponseType] ):
	responsecls: Type[ResponseType] = Response # type: ignore

	def __init__ ( self, *lines: str, timeout: float = DEFAULT_TIMEOUT ) -> None:
		assert lines and all ( isinstance ( line, str ) for line in lines ), f'invalid {lines=}'
		assert timeout > 0, f'invalid {timeout=}'
		self._buffer = LineBuffer ( lines )
		self._timeout = float ( timeout )

	@property
	def timeout ( self ) -> float:
		return self._timeout

	def serialize ( self ) -> LineBuffer:
		return self._buffer

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}({", ".join(map(repr,self._buffer))})'


def _quote ( text: str ) -> str:
	escaped = text.replace ( '\\', '\\\\' ).replace ( '"', '\\"' )
	return f'"{escaped}"'

def _keyword_args ( opts: Mapping[str,Seq[str]] ) -> str:
	return ' '.join ( f'{key}={value}' for key, values in opts.items() for value in values )


class ProtocolInfoRequest ( Request[ProtocolInfoResponse] ):
	responsecls = ProtocolInfoResponse

	def __init__ ( self, *, timeout: float = DEFAULT_TIMEOUT ) -> None:
		super().__init__ ( COMMAND_PROTOCOLINFO, timeout = timeout )


class AuthenticateRequest ( Request[Response] ):
	def __init__ ( self, secret: str = '', *, timeout: float = DEFAULT_TIMEOUT ) -> None:
		line = f'{COMMAND_AUTHENTICATE} {secret}' if secret else COMMAND_AUTHENTICATE
		super().__init__ ( line, timeout = timeout )

	@classmethod
	def password ( cls, password: str, *, timeout: float = DEFAULT_TIMEOUT ) -> AuthenticateRequest:
		return cls ( _quote ( password ), timeout = timeout )

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}()' # never show the secret


class GetInfoRequest ( Request[GetInfoResponse] ):
	responsecls = GetInfoResponse

	def __init__ ( self, *keys: str, timeout: float = DEFAULT_TIMEOUT ) -> None:
		assert keys, 'GETINFO needs at least one key'
		super().__init__ ( f'{COMMAND_GETINFO} {" ".join(keys)}', timeout = timeout )


class GetConfRequest ( Request[GetConfResponse] ):
	responsecls = GetConfResponse

	def __init__ ( self, *keys: str, timeout: float = DEFAULT_TIMEOUT ) -> None:
		assert keys, 'GETCONF needs at least one key'
		super().__init__ ( f'{COMMAND_GETCONF} {" ".join(keys)}', timeout = timeout )


class SetConfRequest ( Request[Response] ):
	verb = COMMAND_SETCONF

	def __init__ ( self, opts: Mapping[str,Seq[str]], *, timeout: float = DEFAULT_TIMEOUT ) -> None:
		super().__init__ ( f'{self.verb} {_keyword_args(opts)}'.rstrip(), timeout = timeout )


class ResetConfRequest ( SetConfRequest ):
	verb = COMMAND_RESETCONF


class SaveConfRequest ( Request[Response] ):
	def __init__ ( self, *, timeout: float = DEFAULT_TIMEOUT ) -> None:
		super().__init__ ( COMMAND_SAVECONF, timeout = timeout )


class SetEventsRequest ( Request[Response] ):
	def __init__ ( self, *events: str, timeout: float = DEFAULT_TIMEOUT ) -> None:
		super().__init__ ( f'{COMMAND_SETEVENTS} {" ".join(events)}'.rstrip(), timeout = timeout )


class SignalRequest ( Request[Response] ):
	def __init__ ( self, signal: str, *, timeout: float = DEFAULT_TIMEOUT ) -> None:
		super().__init__ ( f'{COMMAND_SIGNAL} {signal}', timeout = timeout )


class DropGuardsRequest ( Request[Response] ):
	def __init__ ( self, *, timeout: float = DEFAULT_TIMEOUT ) -> None:
		super().__init__ ( COMMAND_DROPGUARDS, timeout = timeout )


class AddOnionRequest ( Request[AddOnionResponse] ):
	responsecls = AddOnionResponse

	def __init__ ( self,
		key_type: str,
		key_data: str,
		flags: Seq[str] = (),
		ports: Seq[str] = (),
		*,
		timeout: float = DEFAULT_TIMEOUT,
	) -> None:
		line = f'{COMMAND_ADD_ONION} {key_type}:{key_data}'
		if flags:
			line += f' Flags={",".join(flags)}'
		for port in ports:
			line += f' Port={port}'
		super().__init__ ( line, timeout = timeout )


class DelOnionRequest ( Request[Response] ):
	def __init__ ( self, service_id: str, *, timeout: float = DEFAULT_TIMEOUT ) -> None:
		if service_id.endswith ( '.onion' ):
			service_id = service_id[:-len('.onion')]
		super().__init__ ( f'{COMMAND_DEL_ONION} {service_id}', timeout = timeout )

#endregion
#region EVENTS ----------------------------------------------------------------

class ReplyEvent ( Event ):
	''' a complete ResponseBuffer, plus the raw lines it was built from '''

	def __init__ ( self, buffer: ResponseBuffer, raw: Seq[str] ) -> None:
		self.buffer = buffer
		self.raw = raw

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}({self.buffer!r})'

#endregion
#region CLIENT ----------------------------------------------------------------

READY = 'READY'
IN_DATA_BLOCK = 'IN_DATA_BLOCK'


class Client ( Protocol ):
	'''
	Reply parser. Knows nothing about requests: every complete message,
	solicited or not, comes out as a ReplyEvent.
	'''
	_MAXLINE = 65536
	state: str
	buffer: ResponseBuffer
	raw: List[str]

	def __init__ ( self ) -> None:
		self.reset()

	def reset ( self ) -> None:
		self.state = READY
		self.buffer = ResponseBuffer()
		self.raw = []
		self._data_head: Opt[Tuple[int,str]] = None
		self._data_lines: List[str] = []

	def send ( self, request: Request[ResponseType] ) -> Iterator[Event]:
		yield from SendDataEvent ( request.serialize().normalize() ).go()

	def _receive_line ( self, line: BYTES ) -> Iterator[Event]:
		log = logger.getChild ( 'Client._receive_line' )
		text = b2s ( line, 'utf-8', 'replace' )

		if self.state == IN_DATA_BLOCK:
			self.raw.append ( text )
			if text != '.':
				self._data_lines.append ( text )
				return
			assert self._data_head is not None
			status, head = self._data_head
			self.buffer.data_lines.append ( DataReplyLine ( status, head, tuple ( self._data_lines ) ) )
			self._data_head = None
			self._data_lines = []
			self.state = READY
			return

		if not _r_status.match ( text ):
			log.warning ( f'protocol error, unparseable status code: {text!r}' )
			return
		self.raw.append ( text )
		status, sep, payload = int ( text[:3] ), text[3:4], text[4:]
		if sep == ' ':
			self.buffer.end_line = EndReplyLine ( status, payload )
			event = ReplyEvent ( self.buffer, tuple ( self.raw ) )
			self.reset()
			yield event
		elif sep == '-':
			self.buffer.mid_lines.append ( MidReplyLine ( status, payload ) )
		elif sep == '+':
			self._data_head = ( status, payload )
			self._data_lines = []
			self.state = IN_DATA_BLOCK
		else:
			log.error ( f'failed to classify reply line {text!r}, discarding message in progress' )
			self.reset()

#endregion
