# tests/conftest.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from titlequote.adapters.repos.locations import SqlAlchemyLocationLookup
from titlequote.adapters.repos.sessions import FallbackSessionStore, SqlAlchemySessionStore
from titlequote.models import Base
from titlequote.service_layer.reference_seed import seed_reference
from titlequote.service_layer.use_cases.official_quote import OfficialQuoteService
from titlequote.service_layer.use_cases.quick_quote import QuickQuoteService

LVIS = "http://services.firstam.com/lvis/v2.0"
MISMO = "http://www.mismo.org/residential/2009/schemas"
XLINK = "http://www.w3.org/1999/xlink"

PRODUCT_LIST_XML = f"""<?xml version="1.0" encoding="utf-8"?>
<LVIS_XML xmlns="{LVIS}">
  <LVIS_ACK_NACK><StatusCd>1000</StatusCd></LVIS_ACK_NACK>
  <LVIS_CALCULATOR_TYPE_DATA_RESPONSE>
    <CalcTypeData>
      <ProductsList>
        <PolicyProducts>
          <PolicyProduct>
            <PolicyId>101</PolicyId>
            <PolicyName>ALTA Owner's Policy</PolicyName>
            <IsDefault>true</IsDefault>
            <DefaultRateTypeId>1</DefaultRateTypeId>
            <ValidRateTypes><KeyValue><Key>1</Key><Value>Basic</Value></KeyValue></ValidRateTypes>
          </PolicyProduct>
          <PolicyProduct>
            <PolicyId>102</PolicyId>
            <PolicyName>Homeowner's Policy</PolicyName>
            <IsDefault>false</IsDefault>
          </PolicyProduct>
        </PolicyProducts>
        <SecondPolicyProducts>
          <PolicyProduct>
            <PolicyId>201</PolicyId>
            <PolicyName>ALTA Loan Policy</PolicyName>
            <IsDefault>true</IsDefault>
          </PolicyProduct>
        </SecondPolicyProducts>
        <Endorsements>
          <Endorsement>
            <ProductId>E81</ProductId>
            <ProductName>ALTA 8.1 Environmental</ProductName>
            <ParentPolicyId>201</ParentPolicyId>
            <IsDefault>true</IsDefault>
          </Endorsement>
        </Endorsements>
        <ClosingCosts>
          <ClosingCost>
            <ProductId>531</ProductId>
            <ProductName>Escrow Settlement</ProductName>
            <IsDefault>true</IsDefault>
            <IncludedFees>
              <ClosingFee><Id>9001</Id><Name>Escrow Fee</Name></ClosingFee>
              <ClosingFee><Id>9002</Id><Name>Courier Fee</Name></ClosingFee>
              <ClosingFee><Id>9003</Id></ClosingFee>
            </IncludedFees>
          </ClosingCost>
          <ClosingCost>
            <ProductId>532</ProductId>
            <ProductName>Attorney Closing</ProductName>
            <IsDefault>false</IsDefault>
            <IncludedFees>
              <ClosingFee><Id>9100</Id><Name>Attorney Fee</Name></ClosingFee>
            </IncludedFees>
          </ClosingCost>
        </ClosingCosts>
      </ProductsList>
    </CalcTypeData>
  </LVIS_CALCULATOR_TYPE_DATA_RESPONSE>
</LVIS_XML>
"""


def _fee(label: str, description: str, disclosure: str, payments: str) -> str:
    return f"""
                  <FEE xlink:label="{label}">
                    <FEE_DETAIL>
                      <FeeDescription>{description}</FeeDescription>
                      <DisclosureItemName>{disclosure}</DisclosureItemName>
                    </FEE_DETAIL>
                    <FEE_PAYMENTS>{payments}</FEE_PAYMENTS>
                  </FEE>"""


def _payment(payer: str, *, actual: str | None = None, estimated: str | None = None) -> str:
    out = f"<FEE_PAYMENT><FeePaymentPaidByType>{payer}</FeePaymentPaidByType>"
    if actual is not None:
        out += f"<FeeActualPaymentAmount>{actual}</FeeActualPaymentAmount>"
    if estimated is not None:
        out += f"<FeeEstimatedPaymentAmount>{estimated}</FeeEstimatedPaymentAmount>"
    return out + "</FEE_PAYMENT>"


DEFAULT_FEES = "".join(
    [
        _fee("FEE_POLICY_1", "Owner Policy", "Owner's Title Insurance", _payment("Buyer", estimated="1500.00")),
        _fee(
            "FEE_POLICY_2",
            "Loan Policy",
            "Lender's Title Insurance",
            _payment("Buyer", actual="400.00", estimated="450.00"),
        ),
        _fee("FEE_RECORDING_1", "Recording Fee - Deed", "Conveyance Deed", _payment("Buyer", estimated="125.5")),
        _fee(
            "FEE_CLOSING_1",
            "Escrow Settlement Fee",
            "Settlement or Closing Fee",
            _payment("Buyer", estimated="500") + _payment("Seller", estimated="250.005"),
        ),
    ]
)


def rates_xml(fees: str = DEFAULT_FEES, *, flag: str = "HasCalculatedRates") -> str:
    return f"""<?xml version="1.0" encoding="utf-8"?>
<LVIS_XML xmlns="{LVIS}" xmlns:xlink="{XLINK}">
  <LVIS_ACK_NACK><StatusCd>1000</StatusCd></LVIS_ACK_NACK>
  <LVIS_CALCULATOR_RESPONSE>
    <{flag}>true</{flag}>
    <MISMO_XML>
      <MESSAGE xmlns="{MISMO}">
        <DEAL_SETS><DEAL_SET><DEALS><DEAL><LOANS>
          <LOAN xlink:label="SubjectLoan">
            <FEE_INFORMATION>
              <FEES>{fees}
              </FEES>
            </FEE_INFORMATION>
            <LOAN_COMMENTS>
              <LOAN_COMMENT xlink:label="RESPONSE_NOTE_1">
                <LoanCommentText>&lt;b&gt;Rates valid for 30 days&lt;/b&gt;</LoanCommentText>
              </LOAN_COMMENT>
              <LOAN_COMMENT xlink:label="INTERNAL_1">
                <LoanCommentText>not for callers</LoanCommentText>
              </LOAN_COMMENT>
            </LOAN_COMMENTS>
          </LOAN>
        </LOANS></DEAL></DEALS></DEAL_SET></DEAL_SETS>
      </MESSAGE>
    </MISMO_XML>
  </LVIS_CALCULATOR_RESPONSE>
</LVIS_XML>
"""


PENDING_XML = f"""<?xml version="1.0" encoding="utf-8"?>
<LVIS_XML xmlns="{LVIS}">
  <LVIS_ACK_NACK><StatusCd>1000</StatusCd></LVIS_ACK_NACK>
  <LVIS_CALCULATOR_RESPONSE>
    <HasCalculatedRates>false</HasCalculatedRates>
    <CalcRateLevel2Data>
      <RateCalcRequest>
        <CalcContextToken>ctx-7f3a</CalcContextToken>
        <QandAs>
          <RateCalcQandA>
            <LinkKey>LK-1</LinkKey>
            <Question>Is the property vacant land?</Question>
            <IsPrompt>true</IsPrompt>
            <Param><ParamCode>VACANT</ParamCode><Name>Vacant Land</Name><ValueType>BOOLEAN</ValueType></Param>
            <Answers><string>false</string></Answers>
          </RateCalcQandA>
          <RateCalcQandA>
            <LinkKey>LK-2</LinkKey>
            <Question>How many lien waivers are needed?</Question>
            <IsPrompt>true</IsPrompt>
            <Param>
              <ParamCode>LIENS</ParamCode><Name>Lien Waiver Count</Name><ValueType>INTEGER</ValueType>
              <MinValue>0</MinValue><MaxValue>10</MaxValue>
            </Param>
            <Answers><string>0</string></Answers>
          </RateCalcQandA>
          <RateCalcQandA>
            <LinkKey>LK-3</LinkKey>
            <Question>Which endorsement package?</Question>
            <IsPrompt>true</IsPrompt>
            <Param><ParamCode>ENDPKG</ParamCode><Name>Endorsement Package</Name></Param>
            <Options>
              <KeyValue><Key>Standard</Key><Value>STD</Value></KeyValue>
              <KeyValue><Key>Enhanced</Key><Value>ENH</Value></KeyValue>
            </Options>
            <DefaultAnswer>STD</DefaultAnswer>
            <Answers><string>STD</string></Answers>
          </RateCalcQandA>
          <RateCalcQandA>
            <LinkKey>LK-4</LinkKey>
            <Question>Underwriter code</Question>
            <IsPrompt>false</IsPrompt>
            <Param><ParamCode>UWCODE</ParamCode></Param>
            <Answers><string>FA</string></Answers>
          </RateCalcQandA>
        </QandAs>
      </RateCalcRequest>
    </CalcRateLevel2Data>
    <MISMO_XML>
      <MESSAGE xmlns="{MISMO}" MISMOReferenceModelIdentifier="3.4.0">
        <DEAL_SETS><DEAL_SET><DEALS><DEAL><LOANS><LOAN/></LOANS></DEAL></DEALS></DEAL_SET></DEAL_SETS>
      </MESSAGE>
    </MISMO_XML>
  </LVIS_CALCULATOR_RESPONSE>
</LVIS_XML>
"""

NACK_XML = f"""<?xml version="1.0" encoding="utf-8"?>
<LVIS_XML xmlns="{LVIS}">
  <LVIS_ACK_NACK>
    <StatusCd>3001</StatusCd>
    <StatusDescription>Invalid request</StatusDescription>
    <ExceptionMessage>County not serviced</ExceptionMessage>
  </LVIS_ACK_NACK>
</LVIS_XML>
"""

VALID_ANSWERS = {"VACANT": "false", "LIENS": 2, "ENDPKG": "ENH"}


class FakeRateCalculator:
    """
    Stands in for the LVIS client. rate_calc responses are consumed in order;
    the last one repeats. An exception instance in the queue is raised instead.
    """

    def __init__(self, rate_calc=None, product_list=PRODUCT_LIST_XML) -> None:
        self.product_list_response = product_list
        self.rate_calc_responses = list(rate_calc or [rates_xml()])
        self.product_list_requests: list[bytes] = []
        self.rate_calc_requests: list[bytes] = []

    @property
    def calls(self) -> int:
        return len(self.product_list_requests) + len(self.rate_calc_requests)

    async def product_list(self, payload: bytes) -> bytes:
        self.product_list_requests.append(payload)
        resp = self.product_list_response
        if isinstance(resp, Exception):
            raise resp
        return resp.encode("utf-8")

    async def rate_calc(self, payload: bytes) -> bytes:
        self.rate_calc_requests.append(payload)
        if len(self.rate_calc_responses) > 1:
            resp = self.rate_calc_responses.pop(0)
        else:
            resp = self.rate_calc_responses[0]
        if isinstance(resp, Exception):
            raise resp
        return resp.encode("utf-8")


class FrozenClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
async def engine():
    """
    Fresh in-memory DB per test. StaticPool makes all connections share the same
    in-memory database for the lifetime of this engine fixture.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def async_session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=True)


@pytest.fixture
async def locations(async_session_maker):
    async with async_session_maker() as session:
        await seed_reference(session)
        await session.commit()
    return SqlAlchemyLocationLookup(async_session_maker)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def store(async_session_maker, clock):
    return FallbackSessionStore(SqlAlchemySessionStore(async_session_maker, ttl_hours=24, clock=clock))


@pytest.fixture
def make_official(store, locations):
    def _make(rates: FakeRateCalculator) -> OfficialQuoteService:
        return OfficialQuoteService(
            store=store, locations=locations, rates=rates, round_timeout_s=5, client_customer_id="TEST"
        )

    return _make


@pytest.fixture
def make_quick(locations):
    def _make(rates: FakeRateCalculator) -> QuickQuoteService:
        return QuickQuoteService(locations=locations, rates=rates, round_timeout_s=5, client_customer_id="TEST")

    return _make
