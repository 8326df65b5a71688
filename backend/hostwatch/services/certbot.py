"""Certbot issuer - obtains certificates from Let's Encrypt.

certbot drives the ACME challenge-response itself: the nginx plugin is tried
first, the standalone authenticator second (it needs port 80 to be free).
"""
import asyncio
import logging
import os
import shutil
from typing import List, Optional, Tuple

from ..config import settings
from .tls import CertificateInfo, load_pem_file

logger = logging.getLogger(__name__)


class IssuanceError(Exception):
    """The certificate provider rejected or did not finish the request."""

    def __init__(self, domain: str, message: str):
        super().__init__(f"{domain}: {message}")
        self.domain = domain
        self.message = message


class CertbotUnavailableError(IssuanceError):
    """certbot is not installed on this host."""


class CertbotIssuer:
    """Runs certbot as a subprocess and reads the issued certificate back."""

    def __init__(
        self,
        certbot_path: Optional[str] = None,
        email: str = "admin@example.com",
        timeout: float = 300,
        live_dir: str = "/etc/letsencrypt/live",
        reload_nginx: bool = True,
    ):
        self.certbot_path = certbot_path
        self.email = email
        self.timeout = timeout
        self.live_dir = live_dir
        self.reload_nginx = reload_nginx

    def resolve_certbot(self) -> Optional[str]:
        """Configured certbot binary, else the one on PATH."""
        if self.certbot_path and os.path.exists(self.certbot_path):
            return self.certbot_path
        return shutil.which("certbot")

    def is_available(self) -> bool:
        return self.resolve_certbot() is not None

    async def _run(self, domain: str, args: List[str]) -> Tuple[int, str, str]:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise IssuanceError(domain, f"certbot did not finish within {self.timeout:.0f}s")
        return proc.returncode, stdout.decode(errors="replace"), stderr.decode(errors="replace")

    def _certonly_args(self, certbot: str, domain: str, email: str, authenticator: str, renew: bool) -> List[str]:
        args = [
            certbot, "certonly", f"--{authenticator}",
            "-d", domain,
            "--cert-name", domain,
            "--non-interactive", "--agree-tos",
            "--email", email,
            "--quiet",
        ]
        if renew:
            args.append("--force-renewal")
        return args

    async def issue(self, domain: str, email: Optional[str] = None, renew: bool = False) -> CertificateInfo:
        """Obtain (or forcibly renew) a certificate for one domain.

        Raises IssuanceError when certbot fails; CertbotUnavailableError when
        it is not installed.
        """
        certbot = self.resolve_certbot()
        if not certbot:
            raise CertbotUnavailableError(domain, "certbot is not installed")

        email = email or self.email
        logger.info(f"Requesting certificate for {domain} (renew={renew})")

        code, _, stderr = await self._run(domain, self._certonly_args(certbot, domain, email, "nginx", renew))
        if code != 0:
            logger.warning(f"certbot nginx plugin failed for {domain}, trying standalone: {stderr.strip()}")
            code, _, stderr = await self._run(domain, self._certonly_args(certbot, domain, email, "standalone", renew))
            if code != 0:
                raise IssuanceError(domain, stderr.strip() or f"certbot exited with status {code}")

        if self.reload_nginx:
            await self._reload_nginx(domain)

        cert_path = os.path.join(self.live_dir, domain, "cert.pem")
        try:
            loop = asyncio.get_running_loop()
            info = await loop.run_in_executor(None, load_pem_file, cert_path)
        except (OSError, ValueError) as e:
            raise IssuanceError(domain, f"certificate was not found after issuance: {e}")

        logger.info(f"Certificate issued for {domain}, valid until {info.valid_to:%Y-%m-%d}")
        return info

    async def _reload_nginx(self, domain: str):
        try:
            code, _, stderr = await self._run(domain, ["systemctl", "reload", "nginx"])
            if code != 0:
                logger.warning(f"Could not reload nginx: {stderr.strip()}")
        except (OSError, IssuanceError) as e:
            logger.warning(f"Could not reload nginx: {e}")


# Global instance
certbot_issuer = CertbotIssuer(
    certbot_path=settings.certbot_path,
    email=settings.certbot_email,
    timeout=settings.certbot_timeout_seconds,
    live_dir=settings.letsencrypt_live_dir,
    reload_nginx=settings.nginx_reload,
)
