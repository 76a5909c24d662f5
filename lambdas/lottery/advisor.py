import logging

import boto3

log = logging.getLogger(__name__)

FALLBACK_ANNOUNCEMENT = "Congratulations to our lucky winners on Home Radio Cash Out! Your MoMo is waiting!"
MOCK_ANNOUNCEMENT = "AI Configuration Missing. Call *789# to play."

ANNOUNCEMENT_PROMPT = """Write a 30-second high-energy radio announcement script for "Home Radio Cash Out" on Home Radio 99.7.
The draw ID is {draw_id}.
The total jackpot was GHS {pool:,.2f}.
There were {winner_count} lucky listeners who each won GHS {prize:,.2f}.
The script should sound like a professional Ghanaian radio hypeman/DJ.
Mention that the money has already been sent to their Mobile Money wallets.
Encourage others to dial *789# to be the next winner."""

FRAUD_PROMPT = """Analyze the following lottery stakes for suspicious patterns.
Suspicious patterns include:
1. High frequency of bets from the same phone number in a short time.
2. Coordinated betting (multiple numbers betting identical amounts at exact same times).
3. Stakes that look like bot behavior.

Stakes Data:
{stakes}

Respond ONLY with "true" if fraud is suspected, or "false" if it looks organic. Do not add any explanation."""


class LotteryAdvisor:
    """Draw narration and fraud screening backed by a Bedrock model.

    Every call degrades to a safe default on failure: draws never wait on it.
    Without a model id the advisor runs in mock mode and never calls out.
    """

    def __init__(self, model_id: str | None = None, client=None, region: str | None = None):
        self.model_id = model_id
        if model_id and client is None:
            client = boto3.client("bedrock-runtime", region_name=region)
        self.client = client
        if not self.configured:
            log.warning("Advisor model not configured. Running in mock mode.")

    @property
    def configured(self) -> bool:
        return bool(self.model_id and self.client is not None)

    def _ask(self, prompt: str, max_tokens: int) -> str:
        response = self.client.converse(
            modelId=self.model_id,
            messages=[{"role": "user", "content": [{"text": prompt}]}],
            inferenceConfig={"maxTokens": max_tokens},
        )
        blocks = response["output"]["message"]["content"]
        return "".join(block.get("text", "") for block in blocks)

    def generate_announcement(self, draw_id: str, pool, winner_count: int, prize) -> str:
        if not self.configured:
            return MOCK_ANNOUNCEMENT
        try:
            prompt = ANNOUNCEMENT_PROMPT.format(
                draw_id=draw_id, pool=float(pool), winner_count=winner_count, prize=float(prize)
            )
            text = self._ask(prompt, max_tokens=400).strip()
            return text or FALLBACK_ANNOUNCEMENT
        except Exception:
            log.exception("AI script generation failed for draw %s", draw_id)
            return FALLBACK_ANNOUNCEMENT

    def detect_fraud(self, tickets) -> bool:
        """True if the model thinks the stake batch looks coordinated or automated."""
        if not self.configured or not tickets:
            return False
        try:
            stakes = "\n".join(
                f"Phone: {t.phone}, Amount: {t.stake}, Time: {t.timestamp}" for t in tickets
            )
            verdict = self._ask(FRAUD_PROMPT.format(stakes=stakes), max_tokens=5)
            return verdict.strip().lower() == "true"
        except Exception:
            # Fail open so an unavailable model never blocks a draw.
            log.exception("AI fraud detection failed")
            return False
