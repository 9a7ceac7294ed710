from __future__ import annotations

# python imports:
import contextlib
import trio # pip install trio
from typing import AsyncIterator, Optional as Opt

# torctl imports:
from torctl_config import Config
import torctl_async
from transport import Dialer
from transport_trio import TrioTransport as Transport

DEFAULT_NETWORK = 'tcp'
DEFAULT_ADDRESS = '127.0.0.1:9051'


class Controller ( torctl_async.Controller ):
	def __init__ ( self,
		nursery: trio.Nursery,
		network: str = DEFAULT_NETWORK,
		address: str = DEFAULT_ADDRESS,
		*,
		dialer: Opt[Dialer] = None,
		config: Opt[Config] = None,
	) -> None:
		super().__init__ ( nursery, network, address,
			dialer = dialer or Transport.dial,
			config = config,
		)


@contextlib.asynccontextmanager
async def open_controller (
	network: str = DEFAULT_NETWORK,
	address: str = DEFAULT_ADDRESS,
	*,
	dialer: Opt[Dialer] = None,
	config: Opt[Config] = None,
) -> AsyncIterator[Controller]:
	'''
	Connect and authenticate, yield the controller, close on the way out.

	async with torctl_trio.open_controller ( 'unix', '/run/tor/control' ) as ctl:
		r = await ctl.get_info ( 'version' )
	'''
	async with trio.open_nursery() as nursery:
		ctl = Controller ( nursery, network, address, dialer = dialer, config = config )
		try:
			await ctl.connect()
			yield ctl
		finally:
			await ctl.close()
