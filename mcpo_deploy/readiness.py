"""
readiness
---------

컨테이너 생성 이후 FQDN/상태 확인과 /docs 스모크 테스트.
둘 다 실패해도 파이프라인을 중단시키지 않는다.
"""

from __future__ import annotations

import time
from typing import Callable

import httpx

from . import azure_resources
from .azure_resources import InstanceStatus, ResourceIdentity
from .errors import CommandError, ReadinessError
from .logging_utils import get_logger


logger = get_logger(__name__)


def await_ready(
    identity: ResourceIdentity,
    *,
    timeout: float = 180.0,
    initial_delay: float = 10.0,
    interval: float = 5.0,
    max_interval: float = 30.0,
    backoff: float = 1.5,
    poll_timeout: float = 60.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> InstanceStatus:
    """
    initial_delay 만큼 기다린 뒤 timeout 안에서 FQDN/상태를 반복 조회한다.
    조회 간격은 backoff 배수로 늘어나며 max_interval 을 넘지 않는다.
    한 번의 조회도 poll_timeout 과 남은 시간 중 작은 쪽을 넘지 않는다.

    - FQDN 이 있고 상태가 Running 이면 즉시 반환
    - timeout 까지 Running 이 아니어도 FQDN 이 있으면 마지막 상태를 반환
    - FQDN 을 끝내 얻지 못하면 ReadinessError
    """
    deadline = clock() + timeout
    if initial_delay > 0:
        sleep(min(initial_delay, timeout))

    last = InstanceStatus(fqdn=None, state=None)
    delay = max(interval, 0.1)
    attempt = 0

    while True:
        attempt += 1
        window = min(poll_timeout, max(deadline - clock(), 1.0))
        try:
            last = azure_resources.show_instance_status(identity, timeout=window)
        except CommandError as e:
            logger.warning("컨테이너 상태 조회 실패 (attempt=%d): %s", attempt, e)
        else:
            if last.fqdn and last.is_running:
                logger.info("컨테이너 준비 완료: %s (state=%s)", last.fqdn, last.state)
                return last
            logger.info("컨테이너 대기 중 (attempt=%d, state=%s)", attempt, last.state)

        remaining = deadline - clock()
        if remaining <= 0:
            break
        sleep(min(delay, remaining))
        delay = min(delay * backoff, max_interval)

    if last.fqdn:
        logger.warning("제한 시간 안에 Running 상태를 확인하지 못했습니다: state=%s", last.state)
        return last

    raise ReadinessError(
        f"컨테이너 FQDN 을 가져오지 못했습니다: {identity.name} ({timeout:g}초 대기)"
    )


def smoke_test(url: str, *, timeout: float = 10.0) -> bool:
    """
    url 에 GET 한 번. 2xx 면 True, 그 외(연결 실패 포함)는 False.
    """
    try:
        response = httpx.get(url, timeout=timeout, follow_redirects=True)
    except httpx.HTTPError as e:
        logger.info("스모크 테스트 요청 실패: %s (%s)", url, e)
        return False

    if response.is_success:
        logger.info("스모크 테스트 통과: %s (status=%d)", url, response.status_code)
        return True
    logger.info("스모크 테스트 실패: %s (status=%d)", url, response.status_code)
    return False
