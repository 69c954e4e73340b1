import os
import sys
import traceback

import appdirs
import cherrypy

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../..'))

from tlecache.cache import CacheStore  # noqa: E402
from tlecache.celestrak_client import CelesTrakClient  # noqa: E402
from tlecache.errors import InvalidRequest, TLEError  # noqa: E402
from tlecache.policy import RefreshScheduler  # noqa: E402
from tlecache.presenter import TLEPresenter  # noqa: E402
from tlecache.repository import TLERepository  # noqa: E402
from tlecache.storage import LocalFileStorage  # noqa: E402
from tlecache.utils import parse_utc, say, utcnow  # noqa: E402

DEFAULT_QUERY = 'SPACEMOBILE'
# Seconds a request waits for a shared fetch before giving up
REQUEST_TIMEOUT = 60


def make_default_repository():
    storage = LocalFileStorage(appdirs.user_cache_dir("tle_cache"))
    return TLERepository(CelesTrakClient(), CacheStore(storage))


class TLEAPI:
    def __init__(self, repository=None, scheduler=None):
        self.repository = repository or make_default_repository()
        self.scheduler = scheduler or RefreshScheduler()

    def _serve(self, query, operation):
        try:
            result = operation(query, timeout=REQUEST_TIMEOUT)
            return TLEPresenter.to_dict(query, result)
        except InvalidRequest as e:
            cherrypy.response.status = 400
            return {'error': str(e)}
        except TLEError as e:
            say(f'API error for {query}: {type(e).__name__}: {str(e)}')
            cherrypy.response.status = 502
            return {'error': str(e)}
        except Exception as e:
            say(f'API error for {query}: {type(e).__name__}: {str(e)}')
            traceback.print_exc()
            cherrypy.response.status = 500
            return {'error': str(e)}

    @cherrypy.expose
    @cherrypy.tools.json_out()
    def records(self, query=DEFAULT_QUERY):
        """GET /api/records?query=SPACEMOBILE"""
        return self._serve(query, self.repository.get_tles)

    @cherrypy.expose
    @cherrypy.tools.json_out()
    def refresh(self, query=DEFAULT_QUERY):
        """GET /api/refresh?query=SPACEMOBILE"""
        return self._serve(query, self.repository.refresh_tles)

    @cherrypy.expose
    @cherrypy.tools.json_out()
    def schedule(self, query=DEFAULT_QUERY, last_scheduled=None):
        """GET /api/schedule?query=SPACEMOBILE&last_scheduled=2025-01-01T00:00:00Z"""
        try:
            last_scheduled_at = parse_utc(last_scheduled) if last_scheduled else None
        except ValueError as e:
            cherrypy.response.status = 400
            return {'error': f'Bad last_scheduled: {e}'}

        record = self.repository.cache_store.load(query)
        decision = self.scheduler.decision(
            record.metadata.fetched_at if record else None,
            last_scheduled_at,
            utcnow(),
            self.repository.policy,
        )
        return TLEPresenter.decision_to_dict(decision)

    @cherrypy.expose
    @cherrypy.tools.json_out()
    def health(self):
        """GET /api/health"""
        return {'status': 'ok'}


def create_app(repository=None):
    """Create and configure the CherryPy application"""
    api = TLEAPI(repository=repository)

    conf = {
        '/': {
            'tools.response_headers.on': True,
            'tools.response_headers.headers': [
                ('Access-Control-Allow-Origin', '*'),
                ('Access-Control-Allow-Methods', 'GET, OPTIONS'),
            ],
        }
    }

    return api, conf


_mounted = False


# "application" is the magic function called by uwsgi
def application(environ, start_response):
    # One repository per process so concurrent requests share fetches
    global _mounted
    if not _mounted:
        api, conf = create_app()
        cherrypy.tree.mount(api, '/api', conf)
        cherrypy.config.update({
            'log.screen': True,
            'environment': 'production',
            'tools.proxy.on': True,
        })
        _mounted = True
    return cherrypy.tree(environ, start_response)


if __name__ == '__main__':
    api, conf = create_app()

    cherrypy.tree.mount(api, '/api', conf)
    cherrypy.config.update({
        'server.socket_host': '0.0.0.0',
        'server.socket_port': 5000,
    })

    say("Starting TLE API server in DEVELOPMENT mode")

    cherrypy.engine.start()
    cherrypy.engine.block()
