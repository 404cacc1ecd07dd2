from twilio.twiml.voice_response import Dial, VoiceResponse

ERROR_MESSAGE = "I apologize, but I encountered an error. Please call back later."


def _speak(target, text: str, audio_url: str | None) -> None:
    if audio_url:
        target.play(audio_url)
    else:
        target.say(text, voice="Polly.Joanna")


def gather_twiml(text: str, action: str, audio_url: str | None = None) -> str:
    """Speak and listen for the caller's next utterance."""
    response = VoiceResponse()
    gather = response.gather(
        input="speech",
        action=action,
        method="POST",
        speech_timeout="auto",
        barge_in=True,
    )
    _speak(gather, text, audio_url)
    # no speech at all: post back empty so the agent can re-ask
    response.redirect(action, method="POST")
    return str(response)


def goodbye_twiml(text: str, audio_url: str | None = None) -> str:
    response = VoiceResponse()
    _speak(response, text, audio_url)
    response.hangup()
    return str(response)


def redirect_twiml(url: str) -> str:
    response = VoiceResponse()
    response.redirect(url, method="POST")
    return str(response)


def dial_twiml(number: str, *, timeout: int | None = None, action: str | None = None) -> str:
    response = VoiceResponse()
    kwargs = {"record": "record-from-answer"}
    if timeout is not None:
        kwargs["timeout"] = timeout
    if action:
        kwargs["action"] = action
        kwargs["method"] = "POST"
    dial = Dial(**kwargs)
    dial.number(number)
    response.append(dial)
    return str(response)


def hangup_twiml() -> str:
    response = VoiceResponse()
    response.hangup()
    return str(response)
