from __future__ import annotations

# python imports:
from abc import ABCMeta, abstractmethod
import logging
import trio # pip install trio
from typing import Callable, Dict, Iterable, Mapping, Optional as Opt, Sequence as Seq, Type

# torctl imports:
from event_handling import AsyncClient
import torctl_proto as proto
from util import hex_encode

logger = logging.getLogger ( __name__ )


#region AUTHENTICATION --------------------------------------------------------

class Authenticator ( metaclass = ABCMeta ):
	method_name: str

	@abstractmethod
	async def authenticate ( self, controller: Controller, protoinfo: proto.ProtocolInfoResponse ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.authenticate()' )

	async def _exchange ( self, controller: Controller, request: proto.AuthenticateRequest ) -> None:
		response = await controller._request ( request )
		controller.authenticated = response.is_success()
		if not controller.authenticated:
			raise proto.AuthFailed ( self.method_name, response )

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}()'


_auth_plugins: Dict[str,Type[Authenticator]] = {}

def auth_plugin ( name: str ) -> Callable[[Type[Authenticator]],Type[Authenticator]]:
	def registrar ( cls: Type[Authenticator] ) -> Type[Authenticator]:
		global _auth_plugins
		assert name == name.upper() and ' ' not in name, f'invalid auth method {name=}'
		assert name not in _auth_plugins, f'duplicate auth method {name!r}'
		cls.method_name = name
		_auth_plugins[name] = cls
		return cls
	return registrar


@auth_plugin ( 'NULL' )
class OpenAuthenticator ( Authenticator ):
	async def authenticate ( self, controller: Controller, protoinfo: proto.ProtocolInfoResponse ) -> None:
		log = logger.getChild ( 'OpenAuthenticator.authenticate' )
		log.info ( 'attempting open authentication' )
		await self._exchange ( controller, proto.AuthenticateRequest() )


@auth_plugin ( 'COOKIE' )
class CookieAuthenticator ( Authenticator ):
	async def authenticate ( self, controller: Controller, protoinfo: proto.ProtocolInfoResponse ) -> None:
		log = logger.getChild ( 'CookieAuthenticator.authenticate' )
		log.info ( 'attempting cookie authentication' )
		path = protoinfo.auth_cookie_file()
		try:
			cookie = await trio.Path ( path ).read_bytes()
		except OSError as e:
			log.error ( f'failed to read cookie {path=}: {e!r}' )
			raise
		await self._exchange ( controller, proto.AuthenticateRequest ( hex_encode ( cookie ) ) )


@auth_plugin ( 'HASHEDPASSWORD' )
class PasswordAuthenticator ( Authenticator ):
	async def authenticate ( self, controller: Controller, protoinfo: proto.ProtocolInfoResponse ) -> None:
		log = logger.getChild ( 'PasswordAuthenticator.authenticate' )
		log.info ( 'attempting password authentication' )
		await self._exchange ( controller, proto.AuthenticateRequest.password ( controller.config.password ) )


@auth_plugin ( 'SAFECOOKIE' )
class SafeCookieAuthenticator ( Authenticator ):
	# the AUTHCHALLENGE handshake is not implemented
	async def authenticate ( self, controller: Controller, protoinfo: proto.ProtocolInfoResponse ) -> None:
		log = logger.getChild ( 'SafeCookieAuthenticator.authenticate' )
		log.info ( 'attempting safe-cookie authentication' )
		raise NotImplementedError ( 'SAFECOOKIE authentication' )


def select_authenticator ( advertised: Iterable[str], preference: Seq[str] ) -> Authenticator:
	''' first method in preference order that the server advertised '''
	methods = list ( advertised )
	for name in preference:
		if name in methods and name in _auth_plugins:
			return _auth_plugins[name]()
	raise proto.NoAuthMethod ( methods, preference )

#endregion
#region CONTROLLER ------------------------------------------------------------

class Controller ( AsyncClient ):
	protocls = proto.Client
	authenticator: Opt[Authenticator] = None

	async def _on_connect ( self ) -> None:
		log = logger.getChild ( 'Controller._on_connect' )
		protoinfo = await self.protocol_info()
		if not protoinfo.is_success():
			raise proto.AuthError ( f'PROTOCOLINFO failed: {protoinfo.status} {protoinfo.status_text}' )
		self.authenticator = select_authenticator (
			protoinfo.auth_methods(),
			self.config.auth_preference,
		)
		log.debug ( f'selected {self.authenticator!r} from {protoinfo.auth_methods()!r}' )
		await self.authenticator.authenticate ( self, protoinfo )
		log.info ( 'successfully authenticated controller' )

	async def protocol_info ( self ) -> proto.ProtocolInfoResponse:
		return await self._request ( proto.ProtocolInfoRequest() )

	async def get_info ( self, *keys: str ) -> proto.GetInfoResponse:
		return await self._request ( proto.GetInfoRequest ( *keys ) )

	async def get_conf ( self, *keys: str ) -> proto.GetConfResponse:
		return await self._request ( proto.GetConfRequest ( *keys ) )

	async def set_conf ( self, opts: Mapping[str,Seq[str]] ) -> proto.Response:
		return await self._request ( proto.SetConfRequest ( opts ) )

	async def reset_conf ( self, opts: Mapping[str,Seq[str]] ) -> proto.Response:
		return await self._request ( proto.ResetConfRequest ( opts ) )

	async def save_conf ( self ) -> proto.Response:
		return await self._request ( proto.SaveConfRequest() )

	async def set_events ( self, *events: str ) -> proto.Response:
		return await self._request ( proto.SetEventsRequest ( *events ) )

	async def signal ( self, signal: str ) -> proto.Response:
		return await self._request ( proto.SignalRequest ( signal ) )

	async def drop_guards ( self ) -> proto.Response:
		return await self._request ( proto.DropGuardsRequest() )

	async def add_onion ( self,
		key_type: str,
		key_data: str,
		flags: Seq[str] = (),
		ports: Seq[str] = (),
	) -> proto.AddOnionResponse:
		return await self._request ( proto.AddOnionRequest ( key_type, key_data, flags, ports ) )

	async def del_onion ( self, service_id: str ) -> proto.Response:
		return await self._request ( proto.DelOnionRequest ( service_id ) )

#endregion
