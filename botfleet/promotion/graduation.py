"""Pass/fail graduation gates and quality buckets per lifecycle stage."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal, Mapping, Union

from ..documents import DocumentError, load_document
from ..lifecycle.types import Stage, StringEnum
from ..values import bool_or_default, float_or_default, float_or_none, int_or_default, round_half_up

GateDirection = Literal['min', 'max', 'eq']
GateMeasure = Union[float, bool, None]


class GraduationBucket(StringEnum):
    A_PLUS = 'A+'
    A = 'A'
    B = 'B'
    C = 'C'
    D = 'D'
    UNRATED = 'UNRATED'


# Extra quality bar that separates A+ from A once every gate passes.
A_PLUS_MIN_WIN_RATE = 55
A_PLUS_MIN_PROFIT_FACTOR = 1.5
A_PLUS_MIN_SHARPE = 1.0


def _pick(payload: Mapping[str, Any], snake: str, camel: str) -> Any:
    if snake in payload:
        return payload[snake]
    return payload.get(camel)


@dataclass(frozen=True)
class GraduationThresholds:
    min_trades: int
    min_win_rate: float
    max_drawdown_pct: float
    min_profit_factor: float
    min_expectancy: float
    min_sharpe: float
    require_has_losers: bool = False
    require_market_data_proof: bool = False
    require_profitable: bool = False
    min_days: int | None = None
    requires_approval: bool = False
    require_walk_forward_validation: bool = False
    min_walk_forward_consistency: float | None = None
    max_overfit_ratio: float | None = None
    require_stress_test_passed: bool = False

    @classmethod
    def from_payload(
        cls, payload: Mapping[str, Any], *, base: 'GraduationThresholds | None' = None
    ) -> 'GraduationThresholds':
        """Accept snake_case or camelCase keys; absent keys keep ``base`` (TRIALS by default)."""

        defaults = base or STAGE_GATE_THRESHOLDS[Stage.TRIALS]
        raw_min_days = _pick(payload, 'min_days', 'minDays')
        raw_consistency = _pick(payload, 'min_walk_forward_consistency', 'minWalkForwardConsistency')
        raw_overfit = _pick(payload, 'max_overfit_ratio', 'maxOverfitRatio')
        return cls(
            min_trades=int_or_default(_pick(payload, 'min_trades', 'minTrades'), defaults.min_trades),
            min_win_rate=float_or_default(_pick(payload, 'min_win_rate', 'minWinRate'), defaults.min_win_rate),
            max_drawdown_pct=float_or_default(
                _pick(payload, 'max_drawdown_pct', 'maxDrawdownPct'), defaults.max_drawdown_pct
            ),
            min_profit_factor=float_or_default(
                _pick(payload, 'min_profit_factor', 'minProfitFactor'), defaults.min_profit_factor
            ),
            min_expectancy=float_or_default(
                _pick(payload, 'min_expectancy', 'minExpectancy'), defaults.min_expectancy
            ),
            min_sharpe=float_or_default(_pick(payload, 'min_sharpe', 'minSharpe'), defaults.min_sharpe),
            require_has_losers=bool_or_default(
                _pick(payload, 'require_has_losers', 'requireHasLosers'), defaults.require_has_losers
            ),
            require_market_data_proof=bool_or_default(
                _pick(payload, 'require_market_data_proof', 'requireMarketDataProof'),
                defaults.require_market_data_proof,
            ),
            require_profitable=bool_or_default(
                _pick(payload, 'require_profitable', 'requireProfitable'), defaults.require_profitable
            ),
            min_days=int_or_default(raw_min_days, 0) if raw_min_days is not None else defaults.min_days,
            requires_approval=bool_or_default(
                _pick(payload, 'requires_approval', 'requiresApproval'), defaults.requires_approval
            ),
            require_walk_forward_validation=bool_or_default(
                _pick(payload, 'require_walk_forward_validation', 'requireWalkForwardValidation'),
                defaults.require_walk_forward_validation,
            ),
            min_walk_forward_consistency=(
                float_or_none(raw_consistency)
                if raw_consistency is not None
                else defaults.min_walk_forward_consistency
            ),
            max_overfit_ratio=float_or_none(raw_overfit) if raw_overfit is not None else defaults.max_overfit_ratio,
            require_stress_test_passed=bool_or_default(
                _pick(payload, 'require_stress_test_passed', 'requireStressTestPassed'),
                defaults.require_stress_test_passed,
            ),
        )

    def to_payload(self) -> dict[str, object]:
        return {
            'min_trades': self.min_trades,
            'min_win_rate': self.min_win_rate,
            'max_drawdown_pct': self.max_drawdown_pct,
            'min_profit_factor': self.min_profit_factor,
            'min_expectancy': self.min_expectancy,
            'min_sharpe': self.min_sharpe,
            'require_has_losers': self.require_has_losers,
            'require_market_data_proof': self.require_market_data_proof,
            'require_profitable': self.require_profitable,
            'min_days': self.min_days,
            'requires_approval': self.requires_approval,
            'require_walk_forward_validation': self.require_walk_forward_validation,
            'min_walk_forward_consistency': self.min_walk_forward_consistency,
            'max_overfit_ratio': self.max_overfit_ratio,
            'require_stress_test_passed': self.require_stress_test_passed,
        }


STAGE_GATE_THRESHOLDS: Mapping[str, GraduationThresholds] = MappingProxyType(
    {
        Stage.TRIALS: GraduationThresholds(
            min_trades=50,
            min_win_rate=35,
            max_drawdown_pct=20,
            min_profit_factor=1.2,
            min_expectancy=10,
            min_sharpe=0.5,
            require_has_losers=True,
            require_market_data_proof=True,
            require_profitable=True,
        ),
        Stage.PAPER: GraduationThresholds(
            min_trades=100,
            min_win_rate=40,
            max_drawdown_pct=15,
            min_profit_factor=1.3,
            min_expectancy=15,
            min_sharpe=0.7,
            require_has_losers=True,
            require_market_data_proof=True,
            require_profitable=True,
            min_days=5,
        ),
        Stage.SHADOW: GraduationThresholds(
            min_trades=200,
            min_win_rate=45,
            max_drawdown_pct=12,
            min_profit_factor=1.4,
            min_expectancy=20,
            min_sharpe=0.9,
            require_has_losers=True,
            require_market_data_proof=True,
            require_profitable=True,
            min_days=10,
            require_walk_forward_validation=True,
            min_walk_forward_consistency=0.5,
            max_overfit_ratio=2.5,
        ),
        Stage.CANARY: GraduationThresholds(
            min_trades=300,
            min_win_rate=48,
            max_drawdown_pct=10,
            min_profit_factor=1.5,
            min_expectancy=25,
            min_sharpe=1.0,
            require_has_losers=True,
            require_market_data_proof=True,
            require_profitable=True,
            min_days=14,
            requires_approval=True,
            require_walk_forward_validation=True,
            min_walk_forward_consistency=0.6,
            max_overfit_ratio=2.0,
            require_stress_test_passed=True,
        ),
        Stage.LIVE: GraduationThresholds(
            min_trades=0,
            min_win_rate=0,
            max_drawdown_pct=100,
            min_profit_factor=0,
            min_expectancy=0,
            min_sharpe=0,
        ),
    }
)


def thresholds_for_stage(
    stage: str, table: Mapping[str, GraduationThresholds] | None = None
) -> GraduationThresholds:
    """Thresholds for ``stage``; stages missing from the table use TRIALS."""

    table = STAGE_GATE_THRESHOLDS if table is None else table
    if stage in table:
        return table[stage]
    return table.get(Stage.TRIALS, STAGE_GATE_THRESHOLDS[Stage.TRIALS])


def load_stage_thresholds(path: Path) -> Mapping[str, GraduationThresholds]:
    """Overlay a per-stage threshold document on the built-in table."""

    payload = load_document(path)
    table = dict(STAGE_GATE_THRESHOLDS)
    for stage, overrides in payload.items():
        if not isinstance(overrides, Mapping):
            raise DocumentError(path, f'thresholds for {stage} must be a mapping')
        table[stage] = GraduationThresholds.from_payload(overrides, base=thresholds_for_stage(stage))
    return MappingProxyType(table)


@dataclass(frozen=True)
class GraduationMetrics:
    total_trades: int
    win_rate: float | None = None
    profit_factor: float | None = None
    max_drawdown_pct: float | None = None
    expectancy: float | None = None
    sharpe: float | None = None
    pnl: float = 0.0
    losers: int = 0
    has_market_data_proof: bool = False
    win_rate_is_decimal: bool = False
    walk_forward_passed: bool | None = None
    walk_forward_consistency: float | None = None
    overfit_ratio: float | None = None
    stress_test_passed: bool | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> 'GraduationMetrics':
        walk_forward = _pick(payload, 'walk_forward_passed', 'walkForwardPassed')
        stress = _pick(payload, 'stress_test_passed', 'stressTestPassed')
        return cls(
            total_trades=max(int_or_default(_pick(payload, 'total_trades', 'totalTrades'), 0), 0),
            win_rate=float_or_none(_pick(payload, 'win_rate', 'winRate')),
            profit_factor=float_or_none(_pick(payload, 'profit_factor', 'profitFactor')),
            max_drawdown_pct=float_or_none(_pick(payload, 'max_drawdown_pct', 'maxDrawdownPct')),
            expectancy=float_or_none(payload.get('expectancy')),
            sharpe=float_or_none(payload.get('sharpe')),
            pnl=float_or_default(payload.get('pnl'), 0.0),
            losers=max(int_or_default(payload.get('losers'), 0), 0),
            has_market_data_proof=bool_or_default(
                _pick(payload, 'has_market_data_proof', 'hasMarketDataProof'), False
            ),
            win_rate_is_decimal=bool_or_default(_pick(payload, 'win_rate_is_decimal', 'winRateIsDecimal'), False),
            walk_forward_passed=bool_or_default(walk_forward, False) if walk_forward is not None else None,
            walk_forward_consistency=float_or_none(
                _pick(payload, 'walk_forward_consistency', 'walkForwardConsistency')
            ),
            overfit_ratio=float_or_none(_pick(payload, 'overfit_ratio', 'overfitRatio')),
            stress_test_passed=bool_or_default(stress, False) if stress is not None else None,
        )


@dataclass(frozen=True)
class GraduationGate:
    id: str
    name: str
    description: str
    required: float | bool
    current: GateMeasure
    passed: bool
    unit: str
    direction: GateDirection

    def to_payload(self) -> dict[str, object]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'required': self.required,
            'current': self.current,
            'passed': self.passed,
            'unit': self.unit,
            'direction': self.direction,
        }


@dataclass(frozen=True)
class GraduationStatus:
    gates: tuple[GraduationGate, ...]
    gates_passed: int
    gates_total: int
    progress_percent: int
    is_eligible: bool
    blockers: tuple[str, ...]
    bucket: GraduationBucket

    def to_payload(self) -> dict[str, object]:
        return {
            'gates': [gate.to_payload() for gate in self.gates],
            'gates_passed': self.gates_passed,
            'gates_total': self.gates_total,
            'progress_percent': self.progress_percent,
            'is_eligible': self.is_eligible,
            'blockers': list(self.blockers),
            'bucket': str(self.bucket),
        }


def _bucket(
    metrics: GraduationMetrics, passed: int, total: int, win_rate: float, profit_factor: float
) -> GraduationBucket:
    if metrics.total_trades == 0:
        return GraduationBucket.UNRATED
    if passed == total:
        if (
            win_rate >= A_PLUS_MIN_WIN_RATE
            and profit_factor >= A_PLUS_MIN_PROFIT_FACTOR
            and (metrics.sharpe or 0.0) >= A_PLUS_MIN_SHARPE
        ):
            return GraduationBucket.A_PLUS
        return GraduationBucket.A
    if passed >= 4:
        return GraduationBucket.B
    if passed >= 3:
        return GraduationBucket.C
    if passed >= 1:
        return GraduationBucket.D
    return GraduationBucket.UNRATED


def compute_graduation_status(
    metrics: GraduationMetrics,
    thresholds: GraduationThresholds | None = None,
) -> GraduationStatus:
    """Evaluate the five core graduation gates.

    ``progress_percent`` is the plain share of passed gates; it is not the
    weighted promotion progress score.
    """

    thresholds = thresholds or STAGE_GATE_THRESHOLDS[Stage.TRIALS]
    win_rate = metrics.win_rate or 0.0
    profit_factor = metrics.profit_factor or 0.0
    expectancy = metrics.expectancy or 0.0
    drawdown = metrics.max_drawdown_pct

    gates = (
        GraduationGate(
            id='trades',
            name='Sample Size',
            description='Minimum trades for statistical significance',
            required=thresholds.min_trades,
            current=metrics.total_trades,
            passed=metrics.total_trades >= thresholds.min_trades,
            unit='trades',
            direction='min',
        ),
        GraduationGate(
            id='winRate',
            name='Win Rate',
            description='Percentage of winning trades',
            required=thresholds.min_win_rate,
            current=win_rate,
            passed=win_rate >= thresholds.min_win_rate,
            unit='%',
            direction='min',
        ),
        GraduationGate(
            id='profitFactor',
            name='Profit Factor',
            description='Gross profit / gross loss ratio',
            required=thresholds.min_profit_factor,
            current=profit_factor,
            passed=profit_factor >= thresholds.min_profit_factor,
            unit='x',
            direction='min',
        ),
        # Zero trades never pass on an undefined drawdown.
        GraduationGate(
            id='maxDrawdown',
            name='Max Drawdown',
            description='Maximum peak-to-trough decline',
            required=thresholds.max_drawdown_pct,
            current=drawdown if drawdown is not None else 0.0,
            passed=metrics.total_trades > 0 and drawdown is not None and drawdown <= thresholds.max_drawdown_pct,
            unit='%',
            direction='max',
        ),
        GraduationGate(
            id='expectancy',
            name='Expectancy',
            description='Average profit per trade',
            required=thresholds.min_expectancy,
            current=expectancy,
            passed=expectancy >= thresholds.min_expectancy,
            unit='$',
            direction='min',
        ),
    )

    passed = sum(1 for gate in gates if gate.passed)
    total = len(gates)
    return GraduationStatus(
        gates=gates,
        gates_passed=passed,
        gates_total=total,
        progress_percent=round_half_up(passed / total * 100),
        is_eligible=passed == total,
        blockers=tuple(gate.name for gate in gates if not gate.passed),
        bucket=_bucket(metrics, passed, total, win_rate, profit_factor),
    )


@dataclass(frozen=True)
class GraduationChecklist:
    gates: tuple[GraduationGate, ...]
    all_passed: bool
    passed_count: int
    total_count: int
    blockers: tuple[str, ...]

    def to_payload(self) -> dict[str, object]:
        return {
            'gates': [gate.to_payload() for gate in self.gates],
            'all_passed': self.all_passed,
            'passed_count': self.passed_count,
            'total_count': self.total_count,
            'blockers': list(self.blockers),
        }


def _round_to(value: float, digits: int) -> float:
    scale = 10**digits
    return round_half_up(value * scale) / scale


def _flag_gate(gate_id: str, name: str, description: str, current: bool) -> GraduationGate:
    return GraduationGate(
        id=gate_id,
        name=name,
        description=description,
        required=True,
        current=current,
        passed=current,
        unit='',
        direction='eq',
    )


def check_graduation_checklist(
    metrics: GraduationMetrics,
    thresholds: GraduationThresholds | None = None,
) -> GraduationChecklist:
    """Evaluate the extended checklist used by the promotion scheduler.

    Beyond the core gates this adds sharpe, profitability, a has-losers
    realism check, data provenance and the walk-forward and stress-test
    gates that the threshold flags switch on.
    """

    thresholds = thresholds or STAGE_GATE_THRESHOLDS[Stage.TRIALS]
    win_rate = metrics.win_rate or 0.0
    if metrics.win_rate_is_decimal and win_rate <= 1:
        win_rate *= 100
    drawdown = metrics.max_drawdown_pct or 0.0
    profit_factor = metrics.profit_factor or 0.0
    expectancy = metrics.expectancy or 0.0
    sharpe = metrics.sharpe or 0.0

    gates: list[GraduationGate] = [
        GraduationGate(
            id='min_trades',
            name='Sample Size',
            description='Minimum trades for statistical significance',
            required=thresholds.min_trades,
            current=metrics.total_trades,
            passed=metrics.total_trades >= thresholds.min_trades,
            unit='trades',
            direction='min',
        ),
        GraduationGate(
            id='win_rate',
            name='Win Rate',
            description='Percentage of winning trades',
            required=thresholds.min_win_rate,
            current=_round_to(win_rate, 1),
            passed=win_rate >= thresholds.min_win_rate,
            unit='%',
            direction='min',
        ),
        # A zero drawdown on a real sample is treated as missing data.
        GraduationGate(
            id='max_drawdown',
            name='Max Drawdown',
            description='Maximum peak-to-trough decline',
            required=thresholds.max_drawdown_pct,
            current=_round_to(drawdown, 1),
            passed=metrics.total_trades > 0 and 0 < drawdown <= thresholds.max_drawdown_pct,
            unit='%',
            direction='max',
        ),
        GraduationGate(
            id='profit_factor',
            name='Profit Factor',
            description='Gross profit divided by gross loss',
            required=thresholds.min_profit_factor,
            current=_round_to(profit_factor, 2),
            passed=profit_factor >= thresholds.min_profit_factor,
            unit='x',
            direction='min',
        ),
        GraduationGate(
            id='expectancy',
            name='Expectancy',
            description='Average profit per trade',
            required=thresholds.min_expectancy,
            current=_round_to(expectancy, 2),
            passed=expectancy >= thresholds.min_expectancy,
            unit='$',
            direction='min',
        ),
        GraduationGate(
            id='sharpe',
            name='Sharpe Ratio',
            description='Risk-adjusted return measure',
            required=thresholds.min_sharpe,
            current=_round_to(sharpe, 2),
            passed=sharpe >= thresholds.min_sharpe,
            unit='',
            direction='min',
        ),
    ]

    if thresholds.require_profitable:
        gates.append(_flag_gate('profitable', 'Profitable', 'Strategy must be net profitable', metrics.pnl > 0))
    if thresholds.require_has_losers:
        gates.append(
            _flag_gate('has_losers', 'Has Losers', 'Must have losing trades (curve-fit protection)', metrics.losers > 0)
        )
    if thresholds.require_market_data_proof:
        gates.append(
            _flag_gate(
                'market_data_proof', 'Data Verified', 'Market data source verified', metrics.has_market_data_proof
            )
        )
    if thresholds.require_walk_forward_validation:
        gates.append(
            _flag_gate(
                'walk_forward_validation',
                'Walk-Forward Passed',
                'Out-of-sample validation passed',
                metrics.walk_forward_passed is True,
            )
        )
    if thresholds.min_walk_forward_consistency is not None:
        consistency = metrics.walk_forward_consistency or 0.0
        gates.append(
            GraduationGate(
                id='walk_forward_consistency',
                name='WF Consistency',
                description='Performance consistency across segments',
                required=thresholds.min_walk_forward_consistency,
                current=_round_to(consistency, 2),
                passed=consistency >= thresholds.min_walk_forward_consistency,
                unit='',
                direction='min',
            )
        )
    if thresholds.max_overfit_ratio is not None:
        overfit = metrics.overfit_ratio
        gates.append(
            GraduationGate(
                id='overfit_ratio',
                name='Overfit Ratio',
                description='Training/testing performance ratio (lower is better)',
                required=thresholds.max_overfit_ratio,
                current=_round_to(overfit, 2) if overfit is not None else None,
                passed=overfit is not None and overfit <= thresholds.max_overfit_ratio,
                unit='x',
                direction='max',
            )
        )
    if thresholds.require_stress_test_passed:
        gates.append(
            _flag_gate(
                'stress_test_passed',
                'Stress Test Passed',
                'Passed crisis scenario testing',
                metrics.stress_test_passed is True,
            )
        )

    passed = sum(1 for gate in gates if gate.passed)
    return GraduationChecklist(
        gates=tuple(gates),
        all_passed=passed == len(gates),
        passed_count=passed,
        total_count=len(gates),
        blockers=tuple(gate.name for gate in gates if not gate.passed),
    )


__all__ = [
    'GraduationBucket',
    'GraduationChecklist',
    'GraduationGate',
    'GraduationMetrics',
    'GraduationStatus',
    'GraduationThresholds',
    'STAGE_GATE_THRESHOLDS',
    'check_graduation_checklist',
    'compute_graduation_status',
    'load_stage_thresholds',
    'thresholds_for_stage',
]
