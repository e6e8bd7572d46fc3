"""
HTTP API: submit and stop crawls, query their status, search indexed pages.
"""

import logging
from json import JSONDecodeError

from aiohttp import web

from .intake import generate_crawl_id, parse_crawl_request, status_to_wire
from ..crawler.models import InvalidCrawlRequest
from ..crawler.scheduler import CrawlerScheduler


logger = logging.getLogger(__name__)

SCHEDULER_KEY = web.AppKey("scheduler", CrawlerScheduler)


async def start_crawl(request: web.Request) -> web.Response:
    scheduler = request.app[SCHEDULER_KEY]
    try:
        payload = await request.json()
        crawl_request = parse_crawl_request(payload)
    except (JSONDecodeError, InvalidCrawlRequest) as e:
        raise web.HTTPBadRequest(text=str(e))

    crawl_id = generate_crawl_id()
    scheduler.submit_crawl(crawl_id, crawl_request)
    logger.info(f"Accepted crawl {crawl_id} for {crawl_request.url}")
    return web.Response(text=crawl_id)


async def get_crawl(request: web.Request) -> web.Response:
    scheduler = request.app[SCHEDULER_KEY]
    status = await scheduler.get_crawl_status(request.match_info['crawl_id'])
    return web.json_response(status_to_wire(status))


async def stop_crawl(request: web.Request) -> web.Response:
    scheduler = request.app[SCHEDULER_KEY]
    crawl_id = request.match_info['crawl_id']
    message = request.query.get('message', 'Stopped by user')
    if not await scheduler.stop_crawl(crawl_id, message):
        raise web.HTTPNotFound(text=f"Unknown crawl id: {crawl_id}")
    status = await scheduler.get_crawl_status(crawl_id)
    return web.json_response(status_to_wire(status))


async def search(request: web.Request) -> web.Response:
    scheduler = request.app[SCHEDULER_KEY]
    query = request.query.get('query', '')
    results = await scheduler.search(query)
    return web.json_response([result.to_dict() for result in results])


def create_app(scheduler: CrawlerScheduler) -> web.Application:
    app = web.Application()
    app[SCHEDULER_KEY] = scheduler
    app.router.add_post('/api/crawl', start_crawl)
    app.router.add_get('/api/crawl/{crawl_id}', get_crawl)
    app.router.add_post('/api/crawl/{crawl_id}/stop', stop_crawl)
    app.router.add_get('/api/search', search)
    return app
