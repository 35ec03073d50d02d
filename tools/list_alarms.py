from alarms.storage import ScheduleStore
from config import load_config
from time_utils import format_millis


def main():
    config = load_config()
    store = ScheduleStore(config.alarms_path, key=config.alarm_store_key)
    records = sorted(store.list_all(), key=lambda r: r.trigger_time_millis)
    print(f"\n=== {len(records)} stored alarms ({config.alarms_path}) ===\n")
    for record in records:
        state = "on " if record.enabled else "off"
        print(f"[{state}] {record.id}: {format_millis(record.trigger_time_millis)} | {record.label}")


if __name__ == "__main__":
    main()
