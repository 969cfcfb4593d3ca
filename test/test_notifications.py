from types import SimpleNamespace

from botocore.exceptions import ClientError

from sealdesk.utils.notifications import AWSNotificationDispatcher, signing_url


class FakeSES:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send_email(self, **kwargs):
        if self.fail:
            raise ClientError({"Error": {"Code": "Throttling", "Message": "slow down"}}, "SendEmail")
        self.sent.append(kwargs)


class FakeSNS:
    def __init__(self):
        self.published = []

    def publish(self, **kwargs):
        self.published.append(kwargs)


def _signer(**extra):
    data = {"id": "s1", "name": "Alice Sender", "email": "alice@example.com", "signing_token": "tok"}
    data.update(extra)
    return SimpleNamespace(**data)


def test_signing_link_is_emailed():
    ses = FakeSES()
    dispatcher = AWSNotificationDispatcher(ses_client=ses, sns_client=FakeSNS())

    dispatcher.notify_signer(_signer(), "tok")

    message = ses.sent[0]
    assert message["Destination"] == {"ToAddresses": ["alice@example.com"]}
    assert signing_url("tok") in message["Message"]["Body"]["Text"]["Data"]


def test_sms_number_gets_plus_prefix():
    sns = FakeSNS()
    dispatcher = AWSNotificationDispatcher(ses_client=FakeSES(), sns_client=sns)

    dispatcher.send_sms_code("12125550101", "123456")

    assert sns.published[0]["PhoneNumber"] == "+12125550101"
    assert "123456" in sns.published[0]["Message"]


def test_delivery_failure_is_swallowed():
    dispatcher = AWSNotificationDispatcher(ses_client=FakeSES(fail=True), sns_client=FakeSNS())
    assert dispatcher._send_email("alice@example.com", "subject", "body") is False
    dispatcher.send_reminder(_signer())
