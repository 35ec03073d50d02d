import time

from alarms.sounds import build_sound_chain, ensure_platform_sounds
from audio_io import LoopingPlayer, create_pyaudio
from config import load_config


def main():
    config = load_config()
    ensure_platform_sounds(config.default_alarm_sound_path, config.notification_sound_path)
    pa = create_pyaudio()
    chain = build_sound_chain(
        config.alarm_sound_path, config.default_alarm_sound_path, config.notification_sound_path
    )
    for source in chain:
        player = LoopingPlayer(pa, device_index=config.output_device_index)
        print(f"Playing {source.name} ({source.path})...")
        try:
            player.prepare_async(source.path).result(timeout=5)
        except Exception as exc:
            print(f"  unavailable: {exc}")
            player.release()
            continue
        player.start()
        time.sleep(3)
        player.release()
    pa.terminate()


if __name__ == "__main__":
    main()
