import httpx
from core.exceptions import ValidationError
from core.logger import get_logger

logger = get_logger("captcha")


class CaptchaVerifier:
    """
    회원가입 captcha 검증 (Google reCAPTCHA siteverify)

    - enabled=False (개발 모드): 어떤 토큰이든 통과, 결과만 로그
    - enabled=True: siteverify API 호출 → success가 아니면 422
    """

    def __init__(self, *, enabled: bool, secret: str, verify_url: str, client: httpx.AsyncClient | None):
        self.enabled = enabled
        self.secret = secret
        self.verify_url = verify_url
        self.client = client

    async def validate(self, token: str | None) -> None:
        if not self.enabled:
            logger.info("captcha 개발 모드: 자동 통과", extra={"extra_data": {"type": "CAPTCHA_DEV_MODE"}})
            return

        if not token:
            raise ValidationError("captcha 토큰이 필요합니다.", code="CAPTCHA_FAILED")

        if self.client is None:
            raise RuntimeError("HTTP 클라이언트가 초기화되지 않았습니다. 서버 시작을 확인하세요.")

        try:
            response = await self.client.post(
                self.verify_url,
                data={"secret": self.secret, "response": token},
            )
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            logger.error(
                "captcha 검증 요청 실패",
                extra={"extra_data": {"type": "CAPTCHA_ERROR", "error": str(e)}},
            )
            raise ValidationError("captcha 검증에 실패했습니다.", code="CAPTCHA_FAILED")

        if not result.get("success"):
            logger.warning(
                "captcha 검증 거부",
                extra={"extra_data": {"type": "CAPTCHA_REJECTED", "error_codes": result.get("error-codes", [])}},
            )
            raise ValidationError("captcha 검증에 실패했습니다.", code="CAPTCHA_FAILED")
