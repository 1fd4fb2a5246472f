"""
mcpo_deploy
-----------

MCPO 컨테이너 배포용 CLI 패키지.
DockerHub 이미지 퍼블리시와 Azure Container Instances 배포를
docker / az CLI 호출 순서로 묶어서 한 번에 실행하는 것을 목표로 한다.
"""

__all__ = [
    "config",
    "orchestrator",
]
