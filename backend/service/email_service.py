import asyncio
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from core.config import settings
from core.logger import get_logger, mask_email

logger = get_logger("email")


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    text: str
    html: str


class Mailer:
    """
    이메일 발송기

    - enabled=False (개발 모드): 실제로 보내지 않고 로그만 남김
    - enabled=True: SMTP 발송 (smtplib는 블로킹 → 워커 스레드에서 실행)
    """

    def __init__(
        self,
        *,
        enabled: bool,
        host: str,
        port: int,
        user: str,
        password: str,
        use_tls: bool,
        from_email: str,
    ):
        self.enabled = enabled
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email

    async def send(self, to: str, template: EmailTemplate) -> None:
        if not self.enabled:
            logger.info(
                "이메일 개발 모드: 발송 생략",
                extra={"extra_data": {"type": "EMAIL_DEV_MODE", "to": mask_email(to), "subject": template.subject}},
            )
            return

        await asyncio.to_thread(self._send_smtp, to, template)
        logger.info(
            "이메일 발송 완료",
            extra={"extra_data": {"type": "EMAIL_SENT", "to": mask_email(to), "subject": template.subject}},
        )

    def _send_smtp(self, to: str, template: EmailTemplate) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = template.subject
        msg["From"] = self.from_email
        msg["To"] = to
        msg.attach(MIMEText(template.text, "plain", "utf-8"))
        msg.attach(MIMEText(template.html, "html", "utf-8"))

        with smtplib.SMTP(self.host, self.port, timeout=10) as server:
            if self.use_tls:
                server.starttls()
            if self.user:
                server.login(self.user, self.password)
            server.sendmail(self.from_email, [to], msg.as_string())


def password_reset_template(nickname: str, reset_url: str, expiry_minutes: int) -> EmailTemplate:
    text = (
        f"안녕하세요 {nickname}님,\n\n"
        f"비밀번호 재설정을 요청하셨습니다. 아래 링크에서 새 비밀번호를 설정해주세요.\n\n"
        f"{reset_url}\n\n"
        f"이 링크는 {expiry_minutes}분 후 만료됩니다.\n"
        f"본인이 요청하지 않았다면 이 메일을 무시하세요.\n"
    )
    html = (
        f"<p>안녕하세요 <strong>{nickname}</strong>님,</p>"
        f"<p>비밀번호 재설정을 요청하셨습니다. 아래 버튼을 눌러 새 비밀번호를 설정해주세요.</p>"
        f'<p><a href="{reset_url}">비밀번호 재설정</a></p>'
        f"<p><strong>이 링크는 {expiry_minutes}분 후 만료됩니다.</strong></p>"
        f"<p>본인이 요청하지 않았다면 이 메일을 무시하세요.</p>"
    )
    return EmailTemplate(subject="비밀번호 재설정 안내", text=text, html=html)


async def send_password_reset_email(mailer: Mailer, nickname: str, email: str, reset_token: str) -> None:
    """
    비밀번호 재설정 메일 발송 (백그라운드 태스크로 실행)

    발송 실패는 로그만 남기고 호출자에게 전파하지 않는다.
    """
    reset_url = f"{settings.frontend_url}/reset-password?token={reset_token}"
    template = password_reset_template(nickname, reset_url, settings.password_reset_expire_minutes)
    try:
        await mailer.send(email, template)
    except Exception as e:
        logger.error(
            "비밀번호 재설정 메일 발송 실패",
            extra={"extra_data": {"type": "EMAIL_ERROR", "to": mask_email(email), "error": str(e)}},
        )
